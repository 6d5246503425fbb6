"""Tests for the FFmpeg engine: command line, stderr parsing and process control.

Process tests use a small shell script in place of the ffmpeg binary.
"""

import os
import stat
import sys

import pytest
from hypothesis import given, settings, strategies as st

from transcoder.modules.transcoding.engine import (
    CompletedEvent,
    EngineRequest,
    ErrorEvent,
    ProgressEvent,
)
from transcoder.modules.transcoding.ffmpeg import FFmpegEngine, ProgressParser, build_command
from transcoder.modules.transcoding.presets import resolve_preset

posix_only = pytest.mark.skipif(sys.platform == "win32", reason="uses a POSIX shell script")


def make_request(tmp_path, **params) -> EngineRequest:
    return EngineRequest(
        input_path=str(tmp_path / "uploads" / "in.mov"),
        output_path=str(tmp_path / "outputs" / "job_medium.mp4"),
        format="mp4",
        params={**resolve_preset("medium").to_engine_params(), **params},
    )


def fake_ffmpeg(tmp_path, body: str) -> str:
    path = tmp_path / "fake-ffmpeg"
    path.write_text("#!/bin/sh\n" + body)
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return str(path)


async def collect(run) -> list:
    return [event async for event in run.events()]


class TestBuildCommand:
    """Tests for the ffmpeg argument list."""

    def test_default_command(self, tmp_path) -> None:
        request = make_request(tmp_path)

        assert build_command(request) == [
            "ffmpeg", "-hide_banner", "-nostdin", "-y",
            "-i", request.input_path,
            "-c:v", "libx264",
            "-c:a", "aac",
            "-b:v", "1500k",
            "-b:a", "192k",
            "-s", "1280x720",
            "-crf", "23",
            "-preset", "veryslow",
            "-tune", "film",
            "-profile:v", "high",
            "-level", "4.1",
            "-f", "mp4",
            request.output_path,
        ]

    def test_extra_parameters_override_encoder_settings(self, tmp_path) -> None:
        request = make_request(
            tmp_path, preset="fast", tune="animation", video_codec="libx265", audio_codec="libopus",
        )

        cmd = build_command(request, ffmpeg_path="/usr/bin/ffmpeg", encoder_preset="medium")

        assert cmd[0] == "/usr/bin/ffmpeg"
        assert cmd[cmd.index("-preset") + 1] == "fast"
        assert cmd[cmd.index("-tune") + 1] == "animation"
        assert cmd[cmd.index("-c:v") + 1] == "libx265"
        assert cmd[cmd.index("-c:a") + 1] == "libopus"
        assert cmd[-1] == request.output_path

    def test_configured_encoder_preset_is_used(self, tmp_path) -> None:
        cmd = build_command(make_request(tmp_path), encoder_preset="faster")
        assert cmd[cmd.index("-preset") + 1] == "faster"


class TestProgressParser:
    """Tests for stderr progress parsing."""

    def test_progress_relative_to_duration(self) -> None:
        parser = ProgressParser()

        assert parser.parse_line("  Duration: 00:01:40.00, start: 0.000000, bitrate: 1205 kb/s") is None
        assert parser.parse_line("frame=  10 fps=0.0 q=0.0 size=0kB time=00:00:25.00 bitrate=0.0kbits/s") == 25.0
        assert parser.parse_line("frame= 100 time=00:01:40.00 bitrate=1kbits/s") == 100.0

    def test_time_before_duration_is_ignored(self) -> None:
        parser = ProgressParser()
        assert parser.parse_line("time=00:00:05.00") is None

    def test_unknown_duration_reports_nothing(self) -> None:
        parser = ProgressParser()
        parser.parse_line("  Duration: N/A, start: 0.000000, bitrate: N/A")
        assert parser.parse_line("time=00:00:05.00") is None

    def test_time_past_duration_is_capped(self) -> None:
        parser = ProgressParser()
        parser.parse_line("Duration: 00:00:10.00")
        assert parser.parse_line("time=00:00:12.50") == 100.0

    @given(
        duration=st.integers(min_value=1, max_value=36000),
        elapsed=st.integers(min_value=0, max_value=36000),
    )
    @settings(max_examples=100)
    def test_percent_always_in_range(self, duration: int, elapsed: int) -> None:
        parser = ProgressParser()
        h, rem = divmod(duration, 3600)
        parser.parse_line(f"Duration: {h:02d}:{rem // 60:02d}:{rem % 60:02d}.00")
        h, rem = divmod(elapsed, 3600)

        percent = parser.parse_line(f"time={h:02d}:{rem // 60:02d}:{rem % 60:02d}.00")

        assert 0.0 <= percent <= 100.0


@posix_only
class TestFFmpegProcess:
    """Tests against a stand-in ffmpeg process."""

    @pytest.mark.asyncio
    async def test_progress_then_error_exit(self, tmp_path) -> None:
        ffmpeg = fake_ffmpeg(tmp_path, (
            "printf 'Input #0\\n  Duration: 00:00:10.00, start: 0.000000\\n' >&2\n"
            "printf 'frame=1 time=00:00:02.50 bitrate=1\\rframe=2 time=00:00:05.00 bitrate=1\\r' >&2\n"
            "printf 'Conversion failed!\\n' >&2\n"
            "exit 1\n"
        ))
        engine = FFmpegEngine(ffmpeg_path=ffmpeg)

        events = await collect(await engine.start(make_request(tmp_path)))

        assert events == [
            ProgressEvent(25.0),
            ProgressEvent(50.0),
            ErrorEvent("ffmpeg exited with code 1: Conversion failed!"),
        ]

    @pytest.mark.asyncio
    async def test_success_exit_and_output_dir_created(self, tmp_path) -> None:
        ffmpeg = fake_ffmpeg(tmp_path, (
            "printf '  Duration: 00:00:04.00\\ntime=00:00:04.00\\n' >&2\n"
            "exit 0\n"
        ))
        engine = FFmpegEngine(ffmpeg_path=ffmpeg)
        request = make_request(tmp_path)

        events = await collect(await engine.start(request))

        assert events == [ProgressEvent(100.0), CompletedEvent()]
        assert os.path.isdir(os.path.dirname(request.output_path))

    @pytest.mark.asyncio
    async def test_terminate_stops_process_without_result(self, tmp_path) -> None:
        ffmpeg = fake_ffmpeg(tmp_path, "exec sleep 30\n")
        engine = FFmpegEngine(ffmpeg_path=ffmpeg, grace_seconds=2.0)

        run = await engine.start(make_request(tmp_path))
        await run.terminate()
        await run.terminate()

        assert run.process.returncode is not None
        assert await collect(run) == []

    @pytest.mark.asyncio
    async def test_kill_after_grace_period(self, tmp_path) -> None:
        ffmpeg = fake_ffmpeg(
            tmp_path, "trap '' TERM\necho ready >&2\nwhile true; do sleep 0.1; done\n"
        )
        engine = FFmpegEngine(ffmpeg_path=ffmpeg, grace_seconds=0.2)

        run = await engine.start(make_request(tmp_path))
        assert await run.process.stderr.readline() == b"ready\n"
        await run.terminate()

        assert run.process.returncode == -9
