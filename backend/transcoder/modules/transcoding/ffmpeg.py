"""FFmpeg transcoding engine.

Runs ffmpeg as a subprocess and derives progress from its stderr:

    Duration: 00:01:23.45, start: 0.000000, bitrate: 1205 kb/s
    frame=  240 fps= 48 q=28.0 size=    1024kB time=00:00:10.00 bitrate=...

Progress lines are terminated by ``\\r`` rather than ``\\n``, so stderr is
split on both.
"""

import asyncio
import logging
import os
import re
from typing import AsyncIterator, Optional

from transcoder.modules.transcoding.engine import (
    CompletedEvent,
    EngineEvent,
    EngineRequest,
    EngineRun,
    ErrorEvent,
    ProgressEvent,
    TranscodeEngine,
)

logger = logging.getLogger(__name__)

DURATION_PATTERN = re.compile(r"Duration:\s*(\d+):(\d{2}):(\d{2}(?:\.\d+)?)")
TIME_PATTERN = re.compile(r"time=\s*(\d+):(\d{2}):(\d{2}(?:\.\d+)?)")
_LINE_SPLIT = re.compile(r"[\r\n]")

DEFAULT_VIDEO_CODEC = "libx264"
DEFAULT_AUDIO_CODEC = "aac"
DEFAULT_TUNE = "film"
PROFILE = "high"
LEVEL = "4.1"


def _to_seconds(hours: str, minutes: str, seconds: str) -> float:
    return int(hours) * 3600 + int(minutes) * 60 + float(seconds)


class ProgressParser:
    """Turns ffmpeg stderr lines into completion percentages.

    The total duration comes from the input banner; ``time=`` values are
    ignored until it is known.
    """

    def __init__(self):
        self.duration: Optional[float] = None

    def parse_line(self, line: str) -> Optional[float]:
        """Parse one stderr line.

        Args:
            line: A single line without its terminator

        Returns:
            Percentage in [0, 100] if the line carried a progress update
        """
        if self.duration is None:
            match = DURATION_PATTERN.search(line)
            if match:
                duration = _to_seconds(*match.groups())
                if duration > 0:
                    self.duration = duration
                return None

        match = TIME_PATTERN.search(line)
        if not match or not self.duration:
            return None

        current = _to_seconds(*match.groups())
        return min(100.0, max(0.0, current / self.duration * 100.0))


def build_command(
    request: EngineRequest,
    ffmpeg_path: str = "ffmpeg",
    encoder_preset: str = "veryslow",
) -> list[str]:
    """Build the ffmpeg argument list for a request.

    The ``video_codec``, ``audio_codec``, ``preset`` and ``tune`` extra
    parameters override the defaults.

    Args:
        request: Engine invocation
        ffmpeg_path: ffmpeg binary
        encoder_preset: x264 preset used when the request does not set one

    Returns:
        Command as a list of arguments
    """
    params = request.params
    return [
        ffmpeg_path,
        "-hide_banner",
        "-nostdin",
        "-y",
        "-i", request.input_path,
        "-c:v", str(params.get("video_codec", DEFAULT_VIDEO_CODEC)),
        "-c:a", str(params.get("audio_codec", DEFAULT_AUDIO_CODEC)),
        "-b:v", str(params["video_bitrate"]),
        "-b:a", str(params["audio_bitrate"]),
        "-s", str(params["resolution"]),
        "-crf", str(params["compression_level"]),
        "-preset", str(params.get("preset", encoder_preset)),
        "-tune", str(params.get("tune", DEFAULT_TUNE)),
        "-profile:v", PROFILE,
        "-level", LEVEL,
        "-f", request.format,
        request.output_path,
    ]


class FFmpegRun(EngineRun):
    """A running ffmpeg process."""

    def __init__(
        self,
        process: asyncio.subprocess.Process,
        grace_seconds: float = 5.0,
    ):
        self.process = process
        self.grace_seconds = grace_seconds
        self._terminated = False
        self._parser = ProgressParser()

    async def _lines(self) -> AsyncIterator[str]:
        buffer = ""
        while True:
            chunk = await self.process.stderr.read(4096)
            if not chunk:
                break
            buffer += chunk.decode("utf-8", errors="replace")
            *lines, buffer = _LINE_SPLIT.split(buffer)
            for line in lines:
                if line.strip():
                    yield line
        if buffer.strip():
            yield buffer

    async def events(self) -> AsyncIterator[EngineEvent]:
        last_line = ""
        async for line in self._lines():
            last_line = line.strip()
            percent = self._parser.parse_line(line)
            if percent is not None:
                yield ProgressEvent(percent)

        returncode = await self.process.wait()
        if self._terminated:
            return
        if returncode == 0:
            yield CompletedEvent()
        else:
            yield ErrorEvent(f"ffmpeg exited with code {returncode}: {last_line}")

    async def terminate(self) -> None:
        """Send SIGTERM, then SIGKILL if ffmpeg outlives the grace period."""
        self._terminated = True
        if self.process.returncode is not None:
            return

        logger.info("Sending SIGTERM to ffmpeg", extra={"pid": self.process.pid})
        try:
            self.process.terminate()
        except ProcessLookupError:
            return

        try:
            await asyncio.wait_for(self.process.wait(), timeout=self.grace_seconds)
        except asyncio.TimeoutError:
            logger.warning(
                "ffmpeg did not exit after SIGTERM, sending SIGKILL",
                extra={"pid": self.process.pid},
            )
            try:
                self.process.kill()
            except ProcessLookupError:
                return
            await self.process.wait()


class FFmpegEngine(TranscodeEngine):
    """Transcoding engine that shells out to ffmpeg."""

    name = "ffmpeg"

    def __init__(
        self,
        ffmpeg_path: str = "ffmpeg",
        encoder_preset: str = "veryslow",
        grace_seconds: float = 5.0,
    ):
        self.ffmpeg_path = ffmpeg_path
        self.encoder_preset = encoder_preset
        self.grace_seconds = grace_seconds

    async def start(self, request: EngineRequest) -> EngineRun:
        output_dir = os.path.dirname(request.output_path)
        if output_dir:
            os.makedirs(output_dir, exist_ok=True)

        cmd = build_command(request, self.ffmpeg_path, self.encoder_preset)
        logger.debug("Starting ffmpeg", extra={"command": cmd})
        process = await asyncio.create_subprocess_exec(
            *cmd,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.PIPE,
        )
        return FFmpegRun(process, self.grace_seconds)
