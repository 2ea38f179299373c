"""Running ffmpeg/ffprobe as subprocesses."""
from __future__ import annotations

import json
import logging
import os
import subprocess
import time
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterator, Protocol

from models.media_models import MediaInfo

logger = logging.getLogger(__name__)

FFMPEG_TIMEOUT_SECONDS = int(os.getenv("FFMPEG_TIMEOUT_SECONDS", "600"))
PROBE_TIMEOUT_SECONDS = int(os.getenv("FFPROBE_TIMEOUT_SECONDS", "30"))
DEFAULT_FPS = 30.0


@dataclass
class ExecResult:
    success: bool
    stdout: str = ""
    stderr: str = ""
    error: str | None = None

    def failure_reason(self, max_chars: int = 500) -> str:
        reason = self.error or self.stderr.strip() or "FFmpeg command failed"
        if len(reason) > max_chars:
            reason = f"...{reason[-max_chars:]}"
        return reason


def _resolve_binary(env_key: str, default: str) -> str:
    return os.getenv(env_key, default) or default


def _run_command(command: list[str], timeout_seconds: int) -> dict[str, Any]:
    try:
        result = subprocess.run(
            command,
            capture_output=True,
            text=True,
            timeout=timeout_seconds,
        )
        return {
            "returncode": result.returncode,
            "stdout": result.stdout,
            "stderr": result.stderr,
        }
    except FileNotFoundError:
        return {"error": f"Binary not found: {command[0]}"}
    except subprocess.TimeoutExpired:
        return {"error": "Command timed out"}
    except Exception as exc:
        return {"error": str(exc)}


def run_ffmpeg(args: list[str], timeout_seconds: int | None = None) -> ExecResult:
    command = [_resolve_binary("FFMPEG_BIN", "ffmpeg"), *args]
    logger.debug("Running %s", " ".join(command))
    started = time.monotonic()
    outcome = _run_command(command, timeout_seconds or FFMPEG_TIMEOUT_SECONDS)
    if "error" in outcome:
        logger.warning("ffmpeg failed to run: %s", outcome["error"])
        return ExecResult(success=False, error=outcome["error"])

    result = ExecResult(
        success=outcome["returncode"] == 0,
        stdout=outcome["stdout"] or "",
        stderr=outcome["stderr"] or "",
    )
    if result.success:
        logger.info("ffmpeg finished in %.2fs", time.monotonic() - started)
    else:
        logger.warning("ffmpeg exited with %s: %s", outcome["returncode"], result.failure_reason())
    return result


def parse_frame_rate(value: Any) -> float | None:
    if value is None:
        return None
    text = str(value).strip()
    if "/" in text:
        num, _, den = text.partition("/")
        try:
            numerator = float(num)
            denominator = float(den)
        except ValueError:
            return None
        if denominator == 0:
            return None
        return numerator / denominator
    try:
        return float(text)
    except ValueError:
        return None


def parse_probe_output(payload: dict[str, Any]) -> MediaInfo | None:
    streams = payload.get("streams") or []
    fmt = payload.get("format") or {}
    if not streams and not fmt:
        return None

    video = next((s for s in streams if s.get("codec_type") == "video"), None)
    audio = next((s for s in streams if s.get("codec_type") == "audio"), None)

    duration = fmt.get("duration") or (video or {}).get("duration") or 0
    fps = parse_frame_rate((video or {}).get("r_frame_rate")) or DEFAULT_FPS
    try:
        return MediaInfo(
            duration=float(duration),
            width=int((video or {}).get("width") or 0),
            height=int((video or {}).get("height") or 0),
            bitrate=int(fmt.get("bit_rate") or 0),
            codec=(video or audio or {}).get("codec_name") or "unknown",
            fps=round(fps, 3),
            audio_codec=(audio or {}).get("codec_name"),
            audio_bitrate=int(audio["bit_rate"]) if audio and audio.get("bit_rate") else None,
        )
    except (TypeError, ValueError) as exc:
        logger.warning("Unreadable probe output: %s", exc)
        return None


def probe_media(path: str, timeout_seconds: int | None = None) -> MediaInfo | None:
    command = [
        _resolve_binary("FFPROBE_BIN", "ffprobe"),
        "-v",
        "error",
        "-print_format",
        "json",
        "-show_format",
        "-show_streams",
        path,
    ]
    outcome = _run_command(command, timeout_seconds or PROBE_TIMEOUT_SECONDS)
    if "error" in outcome or outcome.get("returncode") != 0:
        logger.warning(
            "ffprobe failed for %s: %s",
            path,
            outcome.get("error") or (outcome.get("stderr") or "").strip(),
        )
        return None
    try:
        payload = json.loads(outcome.get("stdout") or "{}")
    except json.JSONDecodeError:
        logger.warning("ffprobe returned invalid JSON for %s", path)
        return None
    return parse_probe_output(payload)


class MediaRunner(Protocol):
    def run(self, args: list[str]) -> ExecResult: ...

    def probe(self, path: str) -> MediaInfo | None: ...


class FFmpegRunner:
    def __init__(self, timeout_seconds: int | None = None):
        self.timeout_seconds = timeout_seconds or FFMPEG_TIMEOUT_SECONDS

    def run(self, args: list[str]) -> ExecResult:
        return run_ffmpeg(args, timeout_seconds=self.timeout_seconds)

    def probe(self, path: str) -> MediaInfo | None:
        return probe_media(path)


@contextmanager
def concat_manifest(path: str | None, content: str | None) -> Iterator[str | None]:
    """Write the concat list for the duration of one ffmpeg run."""
    if path is None:
        yield None
        return
    manifest = Path(path)
    manifest.parent.mkdir(parents=True, exist_ok=True)
    manifest.write_text(content or "", encoding="utf-8")
    try:
        yield path
    finally:
        try:
            manifest.unlink()
        except FileNotFoundError:
            pass


def generate_thumbnail(
    runner: MediaRunner,
    input_path: str,
    output_path: str,
    timestamp: float = 1.0,
) -> str | None:
    Path(output_path).parent.mkdir(parents=True, exist_ok=True)
    result = runner.run(
        [
            "-y",
            "-ss",
            str(timestamp),
            "-i",
            input_path,
            "-vframes",
            "1",
            "-vf",
            "scale=320:-2",
            output_path,
        ]
    )
    if not result.success:
        logger.warning("Thumbnail generation failed for %s: %s", input_path, result.failure_reason())
        return None
    return output_path
