from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable
from uuid import uuid4

from models.media_models import MediaInfo

logger = logging.getLogger(__name__)

ProbeFn = Callable[[str], MediaInfo | None]
IdSource = Callable[[], str]

FILTER_EXPRESSIONS: dict[str, Callable[[float | None], str]] = {
    "brightness": lambda v: f"eq=brightness={_fmt(v if v is not None else 0.1)}",
    "contrast": lambda v: f"eq=contrast={_fmt(v if v is not None else 1.2)}",
    "saturation": lambda v: f"eq=saturation={_fmt(v if v is not None else 1.3)}",
    "blur": lambda v: f"boxblur={_fmt(v if v is not None else 5)}",
    "sharpen": lambda v: f"unsharp=5:5:{_fmt(v if v is not None else 1.0)}",
    "grayscale": lambda v: "colorchannelmixer=.3:.4:.3:0:.3:.4:.3:0:.3:.4:.3",
    "sepia": lambda v: "colorchannelmixer=.393:.769:.189:0:.349:.686:.168:0:.272:.534:.131",
    "vignette": lambda v: f"vignette=PI/{_fmt(v if v is not None else 4)}",
}

XFADE_TRANSITIONS = {
    "dissolve": "fade",
    "wipe": "wipeleft",
    "zoom": "zoomin",
}


class SynthesisError(Exception):
    pass


@dataclass
class SynthesizedCommand:
    tool_name: str
    args: list[str]
    output_path: str
    manifest_path: str | None = None
    manifest_content: str | None = None

    @property
    def output_name(self) -> str:
        return Path(self.output_path).name

    def build_command_string(self, binary: str = "ffmpeg") -> str:
        return " ".join([binary, *(f'"{a}"' if " " in a else a for a in self.args)])


def _fmt(value: float | int, precision: int = 6) -> str:
    if isinstance(value, int) or float(value).is_integer():
        return str(int(value))
    return f"{value:.{precision}f}".rstrip("0").rstrip(".")


def _position(value: Any) -> str:
    return value if isinstance(value, str) else _fmt(value)


def _default_id() -> str:
    return f"{int(time.time() * 1000)}_{uuid4().hex[:6]}"


def speed_factors(speed: float) -> tuple[float, float]:
    """Return (video timestamp scale, audio tempo scale) for a speed multiplier."""
    if speed <= 0:
        raise SynthesisError("Speed must be greater than 0")
    return 1.0 / speed, float(speed)


def _build_atempo_chain(tempo: float) -> list[str]:
    filters: list[str] = []

    while tempo < 0.5 or tempo > 2.0:
        if tempo < 0.5:
            filters.append("atempo=0.5")
            tempo /= 0.5
        elif tempo > 2.0:
            filters.append("atempo=2")
            tempo /= 2.0

    if tempo != 1.0 or not filters:
        filters.append(f"atempo={_fmt(tempo)}")

    return filters


def _escape_drawtext(value: str) -> str:
    return value.replace("'", "\\'").replace(":", "\\:")


def _enable_window(start: float | None, end: float | None) -> str:
    if start is None or end is None:
        return ""
    return f":enable='between(t,{_fmt(start)},{_fmt(end)})'"


def _require_probe(probe: ProbeFn | None, path: str) -> MediaInfo:
    info = probe(path) if probe else None
    if info is None or info.duration <= 0:
        raise SynthesisError(f"Could not determine media properties for {path}")
    return info


class CommandSynthesizer:
    """Turns one validated tool call into ffmpeg arguments and an output path."""

    def __init__(
        self,
        output_dir: str | Path,
        probe: ProbeFn | None = None,
        id_source: IdSource | None = None,
    ):
        self.output_dir = Path(output_dir)
        self.probe = probe
        self.id_source = id_source or _default_id

    def synthesize(
        self,
        tool_name: str,
        args: dict[str, Any],
        inputs: dict[str, Any],
    ) -> SynthesizedCommand:
        builder = getattr(self, f"_build_{tool_name.removeprefix('ffmpeg_')}", None)
        if builder is None or not tool_name.startswith("ffmpeg_"):
            raise SynthesisError(f"No command for tool: {tool_name}")
        return builder(args, inputs)

    def _output(self, prefix: str, ext: str = "mp4") -> str:
        return str(self.output_dir / f"{prefix}_{self.id_source()}.{ext}")

    def _command(self, tool: str, args: list[str], output_path: str, **extra: Any) -> SynthesizedCommand:
        return SynthesizedCommand(tool_name=f"ffmpeg_{tool}", args=[*args, output_path], output_path=output_path, **extra)

    def _build_trim(self, args: dict[str, Any], inputs: dict[str, Any]) -> SynthesizedCommand:
        out = self._output("trimmed")
        return self._command(
            "trim",
            ["-y", "-i", inputs["inputFile"], "-ss", str(args["startTime"]), "-to", str(args["endTime"]), "-c", "copy"],
            out,
        )

    def _build_concat(self, args: dict[str, Any], inputs: dict[str, Any]) -> SynthesizedCommand:
        files: list[str] = inputs["inputFiles"]
        if not files:
            raise SynthesisError("Concat needs at least one input file")
        out = self._output("concat")
        manifest = str(self.output_dir / f"concat_list_{self.id_source()}.txt")
        content = "\n".join("file '{}'".format(p.replace("'", "'\\''")) for p in files)
        return self._command(
            "concat",
            ["-y", "-f", "concat", "-safe", "0", "-i", manifest, "-c", "copy"],
            out,
            manifest_path=manifest,
            manifest_content=content,
        )

    def _build_filter(self, args: dict[str, Any], inputs: dict[str, Any]) -> SynthesizedCommand:
        expression = FILTER_EXPRESSIONS.get(args["filterName"])
        if expression is None:
            raise SynthesisError(f"Unknown filter: {args['filterName']}")
        out = self._output("filtered")
        return self._command(
            "filter",
            ["-y", "-i", inputs["inputFile"], "-vf", expression(args.get("value")), "-c:a", "copy"],
            out,
        )

    def _build_scale(self, args: dict[str, Any], inputs: dict[str, Any]) -> SynthesizedCommand:
        out = self._output("scaled")
        scale = f"scale={_fmt(args['width'])}:{_fmt(args['height'])}"
        return self._command("scale", ["-y", "-i", inputs["inputFile"], "-vf", scale, "-c:a", "copy"], out)

    def _build_speed(self, args: dict[str, Any], inputs: dict[str, Any]) -> SynthesizedCommand:
        pts_scale, tempo = speed_factors(args["speed"])
        atempo = ",".join(_build_atempo_chain(tempo))
        graph = f"[0:v]setpts={_fmt(pts_scale)}*PTS[v];[0:a]{atempo}[a]"
        out = self._output("speed")
        return self._command(
            "speed",
            ["-y", "-i", inputs["inputFile"], "-filter_complex", graph, "-map", "[v]", "-map", "[a]"],
            out,
        )

    def _build_audio(self, args: dict[str, Any], inputs: dict[str, Any]) -> SynthesizedCommand:
        action = args["action"]
        source = inputs["inputFile"]
        if action == "mute":
            return self._command("audio", ["-y", "-i", source, "-c:v", "copy", "-an"], self._output("muted"))
        if action == "volume":
            value = args.get("value")
            volume = f"volume={_fmt(value if value is not None else 1)}"
            return self._command(
                "audio",
                ["-y", "-i", source, "-filter:a", volume, "-c:v", "copy"],
                self._output("volume"),
            )
        if action == "extract":
            return self._command("audio", ["-y", "-i", source, "-vn", "-acodec", "mp3"], self._output("audio", "mp3"))
        if action == "replace":
            audio = inputs.get("audioFile")
            if not audio:
                raise SynthesisError("audioFile is required to replace audio")
            return self._command(
                "audio",
                ["-y", "-i", source, "-i", audio, "-c:v", "copy", "-map", "0:v:0", "-map", "1:a:0", "-shortest"],
                self._output("audio_replaced"),
            )
        raise SynthesisError(f"Unknown audio action: {action}")

    def _build_crop(self, args: dict[str, Any], inputs: dict[str, Any]) -> SynthesizedCommand:
        crop = ":".join(_fmt(args[k]) for k in ("width", "height", "x", "y"))
        out = self._output("cropped")
        return self._command(
            "crop",
            ["-y", "-i", inputs["inputFile"], "-filter:v", f"crop={crop}", "-c:a", "copy"],
            out,
        )

    def _build_overlay(self, args: dict[str, Any], inputs: dict[str, Any]) -> SynthesizedCommand:
        start = args.get("startTime")
        duration = args.get("duration")
        window = _enable_window(start, start + duration if start is not None and duration is not None else None)
        graph = f"overlay={_fmt(args['x'])}:{_fmt(args['y'])}{window}"
        out = self._output("overlay")
        return self._command(
            "overlay",
            ["-y", "-i", inputs["baseFile"], "-i", inputs["overlayFile"], "-filter_complex", graph, "-c:a", "copy"],
            out,
        )

    def _build_text(self, args: dict[str, Any], inputs: dict[str, Any]) -> SynthesizedCommand:
        font_size = args.get("fontSize") or 48
        font_color = args.get("fontColor") or "white"
        window = _enable_window(args.get("startTime"), args.get("endTime"))
        drawtext = (
            f"drawtext=text='{_escape_drawtext(args['text'])}':fontsize={_fmt(font_size)}"
            f":fontcolor={font_color}:x={_position(args['x'])}:y={_position(args['y'])}{window}"
        )
        out = self._output("text")
        return self._command("text", ["-y", "-i", inputs["inputFile"], "-vf", drawtext, "-c:a", "copy"], out)

    def _build_zoom(self, args: dict[str, Any], inputs: dict[str, Any]) -> SynthesizedCommand:
        source = inputs["inputFile"]
        info = self.probe(source) if self.probe else None
        if info is None or info.fps <= 0 or info.width <= 0 or info.height <= 0:
            raise SynthesisError(f"Could not determine media properties for {source}")

        amount = float(args["zoomAmount"])
        duration = float(args["duration"])
        if duration <= 0:
            raise SynthesisError("Zoom duration must be greater than 0")
        total_frames = duration * info.fps
        increment = (amount - 1) / total_frames
        if args["zoomDirection"] == "in":
            zoom_expr = f"zoom+{_fmt(increment, 8)}"
        else:
            zoom_expr = f"{_fmt(amount)}-{_fmt(increment, 8)}*on"

        zoompan = (
            f"zoompan=z='{zoom_expr}':d={max(1, round(total_frames))}"
            f":x='iw/2-(iw/zoom/2)':y='ih/2-(ih/zoom/2)':s={info.width}x{info.height}"
        )
        out = self._output("zoompan")
        return self._command("zoom", ["-y", "-i", source, "-vf", zoompan, "-c:a", "copy"], out)

    def _build_transition(self, args: dict[str, Any], inputs: dict[str, Any]) -> SynthesizedCommand:
        first = inputs["inputFile1"]
        second = inputs["inputFile2"]
        info1 = _require_probe(self.probe, first)
        _require_probe(self.probe, second)

        duration = float(args["duration"])
        offset = info1.duration - duration
        if duration <= 0 or offset < 0:
            raise SynthesisError(
                f"Transition duration {_fmt(duration)}s does not fit the first clip ({info1.duration:.2f}s)"
            )

        transition = args["transitionType"]
        if transition == "fade":
            graph = (
                f"[0:v]fade=t=out:st={_fmt(offset)}:d={_fmt(duration)}[v0];"
                f"[1:v]fade=t=in:st=0:d={_fmt(duration)}[v1];"
                "[v0][v1]concat=n=2:v=1:a=0[outv]"
            )
        elif transition in XFADE_TRANSITIONS:
            graph = (
                f"[0:v][1:v]xfade=transition={XFADE_TRANSITIONS[transition]}"
                f":duration={_fmt(duration)}:offset={_fmt(offset)}[outv]"
            )
        else:
            raise SynthesisError(f"Unknown transition: {transition}")

        out = self._output("transition")
        return self._command(
            "transition",
            ["-y", "-i", first, "-i", second, "-filter_complex", graph, "-map", "[outv]"],
            out,
        )


def synthesize(
    tool_name: str,
    args: dict[str, Any],
    inputs: dict[str, Any],
    output_dir: str | Path,
    probe: ProbeFn | None = None,
    id_source: IdSource | None = None,
) -> SynthesizedCommand:
    command = CommandSynthesizer(output_dir, probe=probe, id_source=id_source).synthesize(
        tool_name, args, inputs
    )
    logger.debug("Synthesized %s -> %s", tool_name, command.output_name)
    return command
