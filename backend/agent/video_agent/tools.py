from __future__ import annotations

import math
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict

ParameterType = Literal["string", "number", "boolean", "array", "enum", "position"]


class ToolParameter(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    type: ParameterType
    description: str
    required: bool = True
    enum: tuple[str, ...] | None = None
    # File parameters go through the path resolver before execution.
    file: bool = False


class ToolSpec(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    description: str
    parameters: tuple[ToolParameter, ...] = ()
    read_only: bool = False

    @property
    def required_parameters(self) -> tuple[str, ...]:
        return tuple(p.name for p in self.parameters if p.required)

    @property
    def file_parameters(self) -> tuple[ToolParameter, ...]:
        return tuple(p for p in self.parameters if p.file)

    def parameter(self, name: str) -> ToolParameter | None:
        for param in self.parameters:
            if param.name == name:
                return param
        return None


FILTER_NAMES = (
    "brightness",
    "contrast",
    "saturation",
    "blur",
    "sharpen",
    "grayscale",
    "sepia",
    "vignette",
)
AUDIO_ACTIONS = ("mute", "volume", "extract", "replace")
TRANSITION_TYPES = ("fade", "wipe", "dissolve", "zoom")
ZOOM_DIRECTIONS = ("in", "out")


def _input_file(name: str = "inputFile", description: str = "Input video file path") -> ToolParameter:
    return ToolParameter(name=name, type="string", description=description, file=True)


TOOL_SPECS: tuple[ToolSpec, ...] = (
    ToolSpec(
        name="ffmpeg_trim",
        description=(
            "Trim a video to keep only the part between startTime and endTime. "
            "Times are seconds (\"10\", \"2.5\") or HH:MM:SS."
        ),
        parameters=(
            _input_file(),
            ToolParameter(name="startTime", type="string", description="Start time, e.g. \"0\" or \"00:00:05\""),
            ToolParameter(name="endTime", type="string", description="End time, e.g. \"10\" or \"00:00:15\""),
        ),
    ),
    ToolSpec(
        name="ffmpeg_concat",
        description="Join several video files end to end, in the given order.",
        parameters=(
            ToolParameter(
                name="inputFiles",
                type="array",
                description="Ordered list of video file paths to join",
                file=True,
            ),
        ),
    ),
    ToolSpec(
        name="ffmpeg_filter",
        description=(
            "Apply a visual filter. Use brightness for 'brighter', grayscale for "
            "'black and white'. value sets the intensity and is optional."
        ),
        parameters=(
            _input_file(),
            ToolParameter(
                name="filterName",
                type="enum",
                description="Filter to apply",
                enum=FILTER_NAMES,
            ),
            ToolParameter(
                name="value",
                type="number",
                description="Filter intensity (brightness 0.1, contrast 1.2, blur 5, ...)",
                required=False,
            ),
        ),
    ),
    ToolSpec(
        name="ffmpeg_scale",
        description="Resize a video. Use -1 for one side to keep the aspect ratio.",
        parameters=(
            _input_file(),
            ToolParameter(name="width", type="number", description="Target width in pixels or -1"),
            ToolParameter(name="height", type="number", description="Target height in pixels or -1"),
        ),
    ),
    ToolSpec(
        name="ffmpeg_speed",
        description="Change playback speed. 2 plays twice as fast, 0.5 is slow motion.",
        parameters=(
            _input_file(),
            ToolParameter(name="speed", type="number", description="Speed multiplier, greater than 0"),
        ),
    ),
    ToolSpec(
        name="ffmpeg_audio",
        description=(
            "Work with the audio track: mute it, change its volume, extract it to "
            "an mp3, or replace it with another audio file."
        ),
        parameters=(
            _input_file(),
            ToolParameter(
                name="action",
                type="enum",
                description="Audio operation",
                enum=AUDIO_ACTIONS,
            ),
            ToolParameter(
                name="value",
                type="number",
                description="Volume multiplier for action=volume (1.0 = unchanged)",
                required=False,
            ),
            ToolParameter(
                name="audioFile",
                type="string",
                description="Replacement audio file for action=replace",
                required=False,
                file=True,
            ),
        ),
    ),
    ToolSpec(
        name="ffmpeg_crop",
        description="Crop a rectangle out of the frame.",
        parameters=(
            _input_file(),
            ToolParameter(name="width", type="number", description="Crop width in pixels"),
            ToolParameter(name="height", type="number", description="Crop height in pixels"),
            ToolParameter(name="x", type="number", description="Left edge of the crop in pixels"),
            ToolParameter(name="y", type="number", description="Top edge of the crop in pixels"),
        ),
    ),
    ToolSpec(
        name="ffmpeg_overlay",
        description=(
            "Place an image or video on top of another video, optionally only "
            "for a time window starting at startTime and lasting duration seconds."
        ),
        parameters=(
            _input_file("baseFile", "Background video file path"),
            _input_file("overlayFile", "Image or video to place on top"),
            ToolParameter(name="x", type="number", description="Overlay x position in pixels"),
            ToolParameter(name="y", type="number", description="Overlay y position in pixels"),
            ToolParameter(name="startTime", type="number", description="Seconds when the overlay appears", required=False),
            ToolParameter(name="duration", type="number", description="Seconds the overlay stays visible", required=False),
        ),
    ),
    ToolSpec(
        name="ffmpeg_transition",
        description="Join two clips with a transition of the given type and length.",
        parameters=(
            _input_file("inputFile1", "First clip"),
            _input_file("inputFile2", "Second clip"),
            ToolParameter(
                name="transitionType",
                type="enum",
                description="Transition style",
                enum=TRANSITION_TYPES,
            ),
            ToolParameter(name="duration", type="number", description="Transition length in seconds"),
        ),
    ),
    ToolSpec(
        name="ffmpeg_text",
        description=(
            "Draw text on the video. x and y accept pixels (20) or expressions "
            "such as \"(w-text_w)/2\" to center."
        ),
        parameters=(
            _input_file(),
            ToolParameter(name="text", type="string", description="Text to draw"),
            ToolParameter(name="x", type="position", description="Horizontal position in pixels or expression"),
            ToolParameter(name="y", type="position", description="Vertical position in pixels or expression"),
            ToolParameter(name="fontSize", type="number", description="Font size, default 48", required=False),
            ToolParameter(name="fontColor", type="string", description="Font color, default white", required=False),
            ToolParameter(name="startTime", type="number", description="Seconds when the text appears", required=False),
            ToolParameter(name="endTime", type="number", description="Seconds when the text disappears", required=False),
        ),
    ),
    ToolSpec(
        name="ffmpeg_zoom",
        description="Ken Burns style slow zoom in or out over the given duration.",
        parameters=(
            _input_file(),
            ToolParameter(
                name="zoomDirection",
                type="enum",
                description="Zoom in or out",
                enum=ZOOM_DIRECTIONS,
            ),
            ToolParameter(name="zoomAmount", type="number", description="Target zoom factor, e.g. 1.5"),
            ToolParameter(name="duration", type="number", description="Zoom length in seconds"),
        ),
    ),
    ToolSpec(
        name="get_video_info",
        description="Read duration, resolution, codec, frame rate and bitrate of a file.",
        parameters=(_input_file(description="File to inspect"),),
        read_only=True,
    ),
    ToolSpec(
        name="list_sandbox_files",
        description="List the project's input and output files.",
        read_only=True,
    ),
)

_TOOLS_BY_NAME = {spec.name: spec for spec in TOOL_SPECS}


def list_tools() -> tuple[ToolSpec, ...]:
    return TOOL_SPECS


def get_tool(name: str) -> ToolSpec | None:
    return _TOOLS_BY_NAME.get(name)


def _is_number(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)


def _check_value(param: ToolParameter, value: Any) -> str | None:
    if param.type == "string":
        if not isinstance(value, str):
            return f"Parameter '{param.name}' must be a string"
        if param.required and not value.strip():
            return f"Parameter '{param.name}' must not be empty"
    elif param.type == "number":
        if not _is_number(value):
            return f"Parameter '{param.name}' must be a number"
    elif param.type == "position":
        # Pixels as a number, or a drawtext expression such as "(w-text_w)/2".
        if isinstance(value, str):
            if not value.strip():
                return f"Parameter '{param.name}' must not be empty"
        elif not _is_number(value):
            return f"Parameter '{param.name}' must be a number or an expression"
    elif param.type == "boolean":
        if not isinstance(value, bool):
            return f"Parameter '{param.name}' must be a boolean"
    elif param.type == "array":
        if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
            return f"Parameter '{param.name}' must be an array of strings"
        if param.required and not value:
            return f"Parameter '{param.name}' must not be empty"
    elif param.type == "enum":
        if not isinstance(value, str) or value not in (param.enum or ()):
            allowed = ", ".join(param.enum or ())
            return f"Parameter '{param.name}' must be one of: {allowed}"
    return None


def validate_arguments(spec: ToolSpec, arguments: Any) -> list[str]:
    """Check an argument map against a tool spec.

    Returns a list of human readable errors, each naming the offending
    parameter. An empty list means the arguments are valid. Parameters the
    spec does not declare are ignored.
    """
    if not isinstance(arguments, dict):
        return [f"Arguments for {spec.name} must be an object"]

    errors: list[str] = []
    for param in spec.parameters:
        value = arguments.get(param.name)
        if value is None:
            if param.required:
                errors.append(f"Missing required parameter '{param.name}'")
            continue
        error = _check_value(param, value)
        if error:
            errors.append(error)

    if spec.name == "ffmpeg_audio" and not errors:
        if arguments.get("action") == "replace" and not arguments.get("audioFile"):
            errors.append("Parameter 'audioFile' is required when action is replace")
    return errors


def validate_tool_call(tool_name: str, arguments: Any) -> list[str]:
    spec = get_tool(tool_name)
    if spec is None:
        return [f"Unknown tool: {tool_name}"]
    return validate_arguments(spec, arguments)


def is_sibling_artifact(tool_name: str, arguments: dict[str, Any]) -> bool:
    """Audio extraction writes an mp3 next to the video instead of replacing it."""
    return tool_name == "ffmpeg_audio" and arguments.get("action") == "extract"


def _parameter_schema(param: ToolParameter) -> dict[str, Any]:
    if param.type == "array":
        schema: dict[str, Any] = {"type": "array", "items": {"type": "string"}}
    elif param.type == "enum":
        schema = {"type": "string", "enum": list(param.enum or ())}
    elif param.type == "position":
        schema = {"type": ["number", "string"]}
    else:
        schema = {"type": param.type}
    schema["description"] = param.description
    return schema


def to_openai_tool(spec: ToolSpec) -> dict[str, Any]:
    return {
        "type": "function",
        "function": {
            "name": spec.name,
            "description": spec.description,
            "parameters": {
                "type": "object",
                "properties": {p.name: _parameter_schema(p) for p in spec.parameters},
                "required": list(spec.required_parameters),
                "additionalProperties": False,
            },
        },
    }


def to_openai_tools(specs: tuple[ToolSpec, ...] | list[ToolSpec] | None = None) -> list[dict[str, Any]]:
    return [to_openai_tool(spec) for spec in (specs if specs is not None else TOOL_SPECS)]
