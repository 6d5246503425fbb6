"""Transcoding engine boundary.

An engine takes an input path, an output path and encoding parameters, and
reports progress followed by exactly one terminal event. The coordinator only
ever talks to engines through ``TranscodeEngine`` and ``EngineRun``.
"""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Optional, Sequence, Union


@dataclass(frozen=True)
class ProgressEvent:
    percent: float


@dataclass(frozen=True)
class CompletedEvent:
    pass


@dataclass(frozen=True)
class ErrorEvent:
    message: str


EngineEvent = Union[ProgressEvent, CompletedEvent, ErrorEvent]


@dataclass(frozen=True)
class EngineRequest:
    """One engine invocation.

    ``params`` holds the resolved preset values (video_bitrate,
    audio_bitrate, resolution, compression_level) merged with the job's
    extra parameters.
    """
    input_path: str
    output_path: str
    format: str
    params: dict[str, Any] = field(default_factory=dict)


class EngineRun(ABC):
    """A started engine invocation."""

    @abstractmethod
    def events(self) -> AsyncIterator[EngineEvent]:
        """Yield progress events, then one CompletedEvent or ErrorEvent."""

    @abstractmethod
    async def terminate(self) -> None:
        """Stop the invocation. Safe to call more than once."""


class TranscodeEngine(ABC):
    """Starts engine invocations."""

    name: str = "engine"

    @abstractmethod
    async def start(self, request: EngineRequest) -> EngineRun:
        ...


class SimulatedRun(EngineRun):
    def __init__(
        self,
        request: EngineRequest,
        script: Sequence[float],
        error: Optional[str],
        step_delay: float,
    ):
        self.request = request
        self._script = list(script)
        self._error = error
        self._step_delay = step_delay
        self._terminated = asyncio.Event()
        self.terminate_calls = 0

    @property
    def terminated(self) -> bool:
        return self._terminated.is_set()

    async def events(self) -> AsyncIterator[EngineEvent]:
        for percent in self._script:
            if self.terminated:
                return
            if self._step_delay:
                await asyncio.sleep(self._step_delay)
            yield ProgressEvent(percent)

        if self.terminated:
            return
        if self._error is not None:
            yield ErrorEvent(self._error)
        else:
            yield CompletedEvent()

    async def terminate(self) -> None:
        self.terminate_calls += 1
        self._terminated.set()


class SimulatedEngine(TranscodeEngine):
    """Engine that replays a fixed progress script without touching any files.

    Args:
        script: Progress percentages to emit, in order
        error: If set, finish with this error instead of success
        step_delay: Seconds to sleep before each progress event
    """

    name = "simulated"

    def __init__(
        self,
        script: Sequence[float] = (10, 25, 50, 75, 100),
        error: Optional[str] = None,
        step_delay: float = 0.0,
    ):
        self.script = list(script)
        self.error = error
        self.step_delay = step_delay
        self.requests: list[EngineRequest] = []
        self.runs: list[SimulatedRun] = []

    async def start(self, request: EngineRequest) -> EngineRun:
        self.requests.append(request)
        run = SimulatedRun(request, self.script, self.error, self.step_delay)
        self.runs.append(run)
        return run
