"""
Handler protocol for SCF functions.

The runtime loop only knows the byte-level ``Handler.invoke`` contract.
Variants differ in the codec pair wrapped around the business logic:

- ByteHandler: raw bytes in and out, no transformation
- StringHandler: UTF-8 text in and out
- JSONHandler: plain JSON values in and out
- ModelHandler: any pydantic-validatable type in and out

``handle`` may be a plain function or a coroutine function. Sync handlers
run in a worker thread so the runtime can still race them against the
invocation deadline.
"""

import asyncio
import inspect
import json
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Generic, Optional, TypeVar, Union

from pydantic import TypeAdapter

from .context import InitializationContext, InvocationContext
from .errors import DecodeError, EncodeError

In = TypeVar("In")
Out = TypeVar("Out")


class Codec(ABC, Generic[In]):
    """Converts between the opaque payload bytes and a handler-side value."""

    @abstractmethod
    def decode(self, payload: bytes) -> In:
        pass

    @abstractmethod
    def encode(self, value: In) -> bytes:
        pass


class BytesCodec(Codec[bytes]):
    def decode(self, payload: bytes) -> bytes:
        return bytes(payload)

    def encode(self, value: bytes) -> bytes:
        if not isinstance(value, (bytes, bytearray, memoryview)):
            raise EncodeError(f"Expected bytes output, got {type(value).__name__}")
        return bytes(value)


class StringCodec(Codec[str]):
    def __init__(self, encoding: str = "utf-8"):
        self.encoding = encoding

    def decode(self, payload: bytes) -> str:
        return payload.decode(self.encoding)

    def encode(self, value: str) -> bytes:
        if not isinstance(value, str):
            raise EncodeError(f"Expected str output, got {type(value).__name__}")
        return value.encode(self.encoding)


class JSONCodec(Codec[Any]):
    def decode(self, payload: bytes) -> Any:
        return json.loads(payload)

    def encode(self, value: Any) -> bytes:
        return json.dumps(value, separators=(",", ":")).encode("utf-8")


class ModelCodec(Codec[Any]):
    """Codec backed by a pydantic TypeAdapter for an arbitrary annotated type."""

    def __init__(self, value_type: Any = Any):
        self.value_type = value_type
        self.adapter: TypeAdapter[Any] = TypeAdapter(value_type)

    def decode(self, payload: bytes) -> Any:
        return self.adapter.validate_json(payload)

    def encode(self, value: Any) -> bytes:
        return self.adapter.dump_json(value)


async def call_handler(func: Callable[..., Any], *args: Any) -> Any:
    """
    Run a sync or async callable without blocking the event loop.

    Coroutine functions are awaited directly; anything else is run in a
    worker thread and its result awaited if it turns out to be awaitable.
    """
    if inspect.iscoroutinefunction(func):
        return await func(*args)

    result = await asyncio.to_thread(func, *args)
    if inspect.isawaitable(result):
        result = await result
    return result


class Handler(ABC):
    """Byte-level contract driven by the runtime loop."""

    @abstractmethod
    async def invoke(self, context: InvocationContext, payload: bytes) -> bytes:
        """
        Process one invocation payload.

        Raises:
            DecodeError: If the payload cannot be converted to the input type
            EncodeError: If the output cannot be converted to a response body
            Exception: Anything the business logic raises
        """
        pass


class EventHandler(Handler, Generic[In, Out]):
    """
    Typed handler composing a decode capability, business logic, and an
    encode capability. A ``None`` result is sent back as an empty body.
    """

    input_codec: Codec = BytesCodec()
    output_codec: Codec = BytesCodec()

    @abstractmethod
    def handle(self, context: InvocationContext, event: In) -> Union[Out, Awaitable[Out]]:
        pass

    def decode(self, payload: bytes) -> In:
        try:
            return self.input_codec.decode(payload)
        except DecodeError:
            raise
        except Exception as e:
            raise DecodeError(f"Unable to decode payload: {e}") from e

    def encode(self, output: Out) -> bytes:
        try:
            return self.output_codec.encode(output)
        except EncodeError:
            raise
        except Exception as e:
            raise EncodeError(f"Unable to encode result: {e}") from e

    @property
    def target(self) -> Callable[..., Any]:
        """The callable the runtime actually schedules for ``handle``."""
        return self.handle

    async def invoke(self, context: InvocationContext, payload: bytes) -> bytes:
        event = self.decode(payload)
        output = await call_handler(self.target, context, event)
        if output is None:
            return b""
        return self.encode(output)


class ByteHandler(EventHandler[bytes, bytes]):
    input_codec = BytesCodec()
    output_codec = BytesCodec()


class StringHandler(EventHandler[str, str]):
    input_codec = StringCodec()
    output_codec = StringCodec()


class JSONHandler(EventHandler[Any, Any]):
    input_codec = JSONCodec()
    output_codec = JSONCodec()


class ModelHandler(EventHandler[In, Out]):
    """
    Handler whose input and output are validated and serialized by pydantic.

    Subclasses set ``input_type``/``output_type`` (any type a TypeAdapter
    accepts, e.g. a BaseModel subclass or ``List[int]``).
    """

    input_type: Any = Any
    output_type: Any = Any

    def __init__(self, input_type: Any = None, output_type: Any = None):
        if input_type is not None:
            self.input_type = input_type
        if output_type is not None:
            self.output_type = output_type
        self.input_codec = ModelCodec(self.input_type)
        self.output_codec = ModelCodec(self.output_type)


class FunctionHandler(EventHandler[Any, Any]):
    """Adapts a plain ``(context, event) -> result`` callable to the Handler contract."""

    def __init__(
        self,
        func: Callable[[InvocationContext, Any], Any],
        input_codec: Codec,
        output_codec: Codec,
    ):
        self.func = func
        self.input_codec = input_codec
        self.output_codec = output_codec

    def handle(self, context: InvocationContext, event: Any) -> Any:
        return self.func(context, event)

    @property
    def target(self) -> Callable[..., Any]:
        return self.func

    def __repr__(self) -> str:
        name = getattr(self.func, "__qualname__", repr(self.func))
        return f"FunctionHandler({name})"


def codec_for(value_type: Any) -> Codec:
    """Pick the codec matching a declared input/output type."""
    if value_type is bytes:
        return BytesCodec()
    if value_type is str:
        return StringCodec()
    return ModelCodec(value_type)


def handler_from_callable(
    func: Callable[[InvocationContext, Any], Any],
    input_type: Any = bytes,
    output_type: Optional[Any] = None,
) -> FunctionHandler:
    """
    Wrap a plain function into a Handler.

    Args:
        func: ``(context, event) -> result`` callable, sync or async
        input_type: ``bytes`` (raw), ``str`` (text) or any pydantic-validatable type
        output_type: Same choices; defaults to ``input_type`` for bytes/str and
            to ``Any`` (serialize by runtime type) otherwise

    Returns:
        FunctionHandler ready to be returned from a handler factory
    """
    if output_type is None:
        output_type = input_type if input_type in (bytes, str) else Any
    return FunctionHandler(func, codec_for(input_type), codec_for(output_type))


HandlerFactory = Callable[[InitializationContext], Union[Handler, Awaitable[Handler]]]
"""Produces the single handler instance during initialization."""
