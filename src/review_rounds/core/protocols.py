from __future__ import annotations

from typing import TYPE_CHECKING, AsyncIterator, Protocol, runtime_checkable

if TYPE_CHECKING:
    from review_rounds.core.types import GenerationContext, RunEvent, StreamFormat


@runtime_checkable
class ResponseHandle(Protocol):
    stream_format: StreamFormat

    def aiter_chunks(self) -> AsyncIterator[bytes]: ...

    async def aclose(self) -> None: ...

    async def __aenter__(self) -> ResponseHandle: ...

    async def __aexit__(self, *exc_info: object) -> None: ...


@runtime_checkable
class Backend(Protocol):
    name: str
    availability_reason: str  # why the last probe failed, "" if it passed

    async def check_availability(self) -> bool: ...

    async def generate(
        self, context: GenerationContext, streaming: bool = True
    ) -> ResponseHandle: ...

    async def review(
        self, problem: str, solution: str, round_number: int, streaming: bool = True
    ) -> ResponseHandle: ...


@runtime_checkable
class Sink(Protocol):
    async def emit(self, event: RunEvent) -> None: ...
