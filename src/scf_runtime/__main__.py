from .bootstrap import app

app(prog_name="scf-runtime")
