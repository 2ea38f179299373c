from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel


class MediaKind(str, Enum):
    VIDEO = "video"
    IMAGE = "image"
    AUDIO = "audio"


class MediaInfo(BaseModel):
    """Stream metadata reported by a probe, local or remote."""

    duration: float = 0.0
    width: int = 0
    height: int = 0
    bitrate: int = 0
    codec: str = "unknown"
    fps: float = 30.0
    audio_codec: str | None = None
    audio_bitrate: int | None = None

    @classmethod
    def from_backend(cls, payload: dict[str, Any]) -> "MediaInfo":
        return cls(
            duration=_as_float(payload.get("duration")) or 0.0,
            width=int(_as_float(payload.get("width")) or 0),
            height=int(_as_float(payload.get("height")) or 0),
            bitrate=int(_as_float(payload.get("bitrate")) or 0),
            codec=str(payload.get("codec") or "unknown"),
            fps=_as_float(payload.get("fps")) or 30.0,
            audio_codec=payload.get("audioCodec") or payload.get("audio_codec"),
            audio_bitrate=_as_int(
                payload.get("audioBitrate", payload.get("audio_bitrate"))
            ),
        )

    def describe(self) -> str:
        return (
            "Video info:\n"
            f"- Duration: {self.duration:.2f}s\n"
            f"- Resolution: {self.width}x{self.height}\n"
            f"- Codec: {self.codec}\n"
            f"- FPS: {self.fps:g}\n"
            f"- Bitrate: {self.bitrate}"
        )


def _as_float(value: Any) -> float | None:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _as_int(value: Any) -> int | None:
    number = _as_float(value)
    return int(number) if number is not None else None
