"""
Process entry point: resolve the user's handler and run the runtime loop.

Handler resolution (``module.attr`` or ``module:attr``, attr defaults to
``handler``), in order:
    1. HANDLER_MODULE / --handler
    2. _HANDLER (set by the SCF sandbox)
    3. ``index.handler``

The resolved object may be a Handler instance, a Handler subclass, or a
plain ``(context, event)`` function. A module exporting ``create_handler``
uses that as the factory instead.
"""

import asyncio
import importlib
import inspect
import os
import signal
import sys
from enum import Enum
from typing import Any, Callable, Optional, Tuple

import typer
from pydantic import ValidationError

from .constants import DEFAULT_HANDLER_MODULE, HANDLER_FALLBACK_ENV, HANDLER_MODULE_ENV
from .context import InitializationContext
from .handler_protocol import (
    FunctionHandler,
    Handler,
    HandlerFactory,
    JSONCodec,
    handler_from_callable,
)
from .logger import get_logger, setup_logging
from .runtime import EXIT_FAILURE, Runtime
from .settings import RuntimeSettings

DEFAULT_HANDLER_ATTRIBUTE = "handler"
FACTORY_ATTRIBUTE = "create_handler"

log = get_logger(__name__)


class InputType(str, Enum):
    BYTES = "bytes"
    STR = "str"
    JSON = "json"


def handler_spec_from_env() -> str:
    return (
        os.environ.get(HANDLER_MODULE_ENV)
        or os.environ.get(HANDLER_FALLBACK_ENV)
        or DEFAULT_HANDLER_MODULE
    )


def split_handler_spec(spec: str) -> Tuple[str, str]:
    """Split ``module.attr`` / ``module:attr`` into its parts."""
    if ":" in spec:
        module_name, _, attr = spec.partition(":")
        return module_name, attr or DEFAULT_HANDLER_ATTRIBUTE
    if "." in spec:
        module_name, _, attr = spec.rpartition(".")
        return module_name, attr
    return spec, DEFAULT_HANDLER_ATTRIBUTE


def import_handler_module(module_name: str):
    # the function code directory is the working directory in the sandbox
    cwd = os.getcwd()
    if cwd not in sys.path:
        sys.path.insert(0, cwd)
    return importlib.import_module(module_name)


def resolve_handler_spec(spec: str):
    """
    Import the object a handler spec names.

    Raises:
        ImportError: If the module cannot be imported
        AttributeError: If the module doesn't export the attribute
    """
    module_name, attr = split_handler_spec(spec)

    try:
        module = import_handler_module(module_name)
    except ImportError:
        # "pkg.mod" with no attribute part: the whole spec is a module path
        if ":" in spec or "." not in spec:
            raise
        module = import_handler_module(spec)
        attr = DEFAULT_HANDLER_ATTRIBUTE

    if hasattr(module, FACTORY_ATTRIBUTE):
        return getattr(module, FACTORY_ATTRIBUTE), True

    if not hasattr(module, attr):
        raise AttributeError(f"Module '{module.__name__}' does not export a '{attr}' handler")
    return getattr(module, attr), False


def as_factory(target: Any, input_type: InputType = InputType.BYTES) -> HandlerFactory:
    """
    Normalize a resolved handler object into a HandlerFactory.

    Raises:
        TypeError: If ``target`` is not a Handler, Handler subclass, or callable
    """
    if isinstance(target, Handler):
        return lambda _context: target

    if inspect.isclass(target) and issubclass(target, Handler):
        return lambda _context: target()

    if callable(target):
        return lambda _context: function_handler(target, input_type)

    raise TypeError(f"'{target!r}' is not a handler")


def function_handler(func: Callable[..., Any], input_type: InputType) -> Handler:
    if input_type is InputType.JSON:
        return FunctionHandler(func, JSONCodec(), JSONCodec())
    event_type = bytes if input_type is InputType.BYTES else str
    return handler_from_callable(func, input_type=event_type)


def load_handler(
    spec: Optional[str] = None, input_type: InputType = InputType.BYTES
) -> HandlerFactory:
    """
    Build the factory the runtime calls during initialization.

    Import and lookup happen inside the factory so that a broken handler
    module is reported to the control plane as an init error.
    """
    handler_spec = spec or handler_spec_from_env()

    def factory(context: InitializationContext):
        context.logger.info(f"Loading handler from '{handler_spec}'")
        target, is_factory = resolve_handler_spec(handler_spec)
        if is_factory:
            return target(context)
        return as_factory(target, input_type)(context)

    return factory


async def serve(factory: HandlerFactory, settings: RuntimeSettings) -> int:
    """Run the runtime loop with SIGTERM/SIGINT wired to a graceful stop."""
    runtime = Runtime(factory, settings=settings)
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(signum, runtime.stop)
        except (NotImplementedError, RuntimeError):
            log.debug(f"Signal handler for {signum} not supported on this platform")
    return await runtime.run()


app = typer.Typer(help="SCF custom runtime for Python functions")


@app.callback()
def main() -> None:
    """SCF custom runtime for Python functions."""


@app.command()
def run(
    handler: Optional[str] = typer.Option(
        None, help="Handler spec (module.attr); defaults to HANDLER_MODULE or _HANDLER"
    ),
    input_type: InputType = typer.Option(
        InputType.BYTES, help="How plain function handlers receive the payload"
    ),
    log_level: Optional[str] = typer.Option(None, help="Overrides LOG_LEVEL"),
) -> None:
    """Poll the control plane and dispatch invocations until stopped."""
    setup_logging(log_level)

    try:
        settings = RuntimeSettings.from_env()
    except ValidationError as e:
        log.error(f"Invalid runtime configuration: {e}")
        raise typer.Exit(EXIT_FAILURE)

    log.info(f"Starting runtime against {settings.runtime_api}")
    exit_code = asyncio.run(serve(load_handler(handler, input_type), settings))
    raise typer.Exit(exit_code)


if __name__ == "__main__":
    app()
