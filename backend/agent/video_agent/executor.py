"""Execution backends for tool calls.

``LocalToolExecutor`` runs ffmpeg against the project sandbox on this machine,
``RemoteToolExecutor`` forwards the call to the remote execution backend.
Both return a ``ToolResult`` and never raise for execution failures.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Protocol

import requests

from utils.backend_client import BackendClient, BackendError
from utils.ffmpeg_builder import SynthesisError, synthesize
from utils.ffmpeg_exec import FFmpegRunner, MediaRunner, concat_manifest
from utils.paths import ResolveContext, add_cache_bust, display_reference, resolve
from utils.sandbox import ensure_sandbox, format_sandbox_listing, list_sandbox_files, output_dir

from .config import VideoAgentConfig
from .tools import ToolSpec, get_tool, is_sibling_artifact, validate_arguments
from .types import ErrorSeverity, ToolError, ToolResult

logger = logging.getLogger(__name__)

_ERROR_HINTS: dict[str, tuple[ErrorSeverity, str | None]] = {
    "UNKNOWN_TOOL": (ErrorSeverity.USER_INPUT, "Use a tool name from the tool list."),
    "VALIDATION_ERROR": (
        ErrorSeverity.VALIDATION,
        "Check the tool schema for required fields and valid types.",
    ),
    "SYNTHESIS_ERROR": (
        ErrorSeverity.USER_INPUT,
        "Check the input files with get_video_info before retrying.",
    ),
    "EXECUTION_ERROR": (
        ErrorSeverity.RECOVERABLE,
        "Check the input file exists with list_sandbox_files and retry.",
    ),
    "BACKEND_ERROR": (ErrorSeverity.RECOVERABLE, "The backend rejected the request."),
    "NETWORK_ERROR": (
        ErrorSeverity.RECOVERABLE,
        "Temporary network issue. Retry the operation.",
    ),
    "UNKNOWN_ERROR": (ErrorSeverity.SYSTEM, None),
}


def _tool_failure(
    code: str,
    message: str,
    context: dict[str, Any] | None = None,
    prefix: str = "Error: ",
) -> ToolResult:
    severity, hint = _ERROR_HINTS.get(code, _ERROR_HINTS["UNKNOWN_ERROR"])
    error = ToolError(
        severity=severity,
        code=code,
        message=message,
        recovery_hint=hint,
        context=context or {},
    )
    return ToolResult(success=False, message=f"{prefix}{message}", error=error)


def _success_message(tool_name: str, args: dict[str, Any], output: str) -> str:
    messages = {
        "ffmpeg_trim": "Trimmed video saved to {output}",
        "ffmpeg_concat": "Concatenated video saved to {output}",
        "ffmpeg_filter": "Applied {filterName} filter, saved to {output}",
        "ffmpeg_scale": "Scaled video to {width}x{height}, saved to {output}",
        "ffmpeg_speed": "Changed speed to {speed}x, saved to {output}",
        "ffmpeg_audio": "Audio {action} complete, saved to {output}",
        "ffmpeg_crop": "Cropped video to {width}x{height}, saved to {output}",
        "ffmpeg_overlay": "Added overlay, saved to {output}",
        "ffmpeg_transition": "Applied {transitionType} transition, saved to {output}",
        "ffmpeg_text": "Added text overlay, saved to {output}",
        "ffmpeg_zoom": "Applied zoom {zoomDirection} effect, saved to {output}",
    }
    template = messages.get(tool_name, "{tool} complete, saved to {output}")
    values = {k: v for k, v in args.items() if isinstance(v, (str, int, float))}
    try:
        return template.format(tool=tool_name, output=output, **values)
    except (KeyError, IndexError):
        return f"{tool_name} complete, saved to {output}"


def _validate(tool_name: str, args: Any) -> tuple[ToolSpec | None, ToolResult | None]:
    spec = get_tool(tool_name)
    if spec is None:
        return None, _tool_failure("UNKNOWN_TOOL", f"Unknown tool: {tool_name}", prefix="")
    errors = validate_arguments(spec, args)
    if errors:
        return spec, _tool_failure(
            "VALIDATION_ERROR",
            f"Invalid arguments for {tool_name}: {'; '.join(errors)}",
            context={"errors": errors},
        )
    return spec, None


class ToolExecutor(Protocol):
    def execute(self, project_id: str, tool_name: str, args: dict[str, Any]) -> ToolResult: ...


class LocalToolExecutor:
    def __init__(
        self,
        runner: MediaRunner | None = None,
        sandbox_root: str | Path | None = None,
        id_source: Any = None,
    ):
        self.runner = runner or FFmpegRunner()
        self.sandbox_root = sandbox_root
        self.id_source = id_source

    def _resolve(self, project_id: str, reference: str) -> str:
        return resolve(project_id, reference, ResolveContext.LOCAL, self.sandbox_root)

    def _resolve_inputs(self, project_id: str, spec: ToolSpec, args: dict[str, Any]) -> dict[str, Any]:
        inputs: dict[str, Any] = {}
        for param in spec.file_parameters:
            value = args.get(param.name)
            if value is None:
                continue
            if isinstance(value, list):
                inputs[param.name] = [self._resolve(project_id, v) for v in value]
            else:
                inputs[param.name] = self._resolve(project_id, value)
        return inputs

    def execute(self, project_id: str, tool_name: str, args: dict[str, Any]) -> ToolResult:
        spec, failure = _validate(tool_name, args)
        if failure is not None:
            return failure

        try:
            if tool_name == "list_sandbox_files":
                listing = list_sandbox_files(project_id, self.sandbox_root)
                return ToolResult(success=True, message=format_sandbox_listing(listing))

            inputs = self._resolve_inputs(project_id, spec, args)
            if tool_name == "get_video_info":
                info = self.runner.probe(inputs["inputFile"])
                if info is None:
                    return _tool_failure("EXECUTION_ERROR", "Could not get video info")
                return ToolResult(success=True, message=info.describe())

            ensure_sandbox(project_id, self.sandbox_root)
            command = synthesize(
                tool_name,
                args,
                inputs,
                output_dir(project_id, self.sandbox_root),
                probe=self.runner.probe,
                id_source=self.id_source,
            )
            logger.info("Running %s for project %s", tool_name, project_id)
            with concat_manifest(command.manifest_path, command.manifest_content):
                result = self.runner.run(command.args)
        except SynthesisError as exc:
            return _tool_failure("SYNTHESIS_ERROR", str(exc), context={"tool": tool_name})
        except Exception as exc:
            logger.exception("Tool %s failed for project %s", tool_name, project_id)
            return _tool_failure(
                "UNKNOWN_ERROR",
                str(exc),
                context={"tool": tool_name},
                prefix=f"Error executing {tool_name}: ",
            )

        if not result.success:
            return _tool_failure(
                "EXECUTION_ERROR",
                result.failure_reason(),
                context={"tool": tool_name},
            )

        return ToolResult(
            success=True,
            message=_success_message(tool_name, args, display_reference(command.output_path) or command.output_path),
            output_path=command.output_path,
            is_sibling=is_sibling_artifact(tool_name, args),
        )


class RemoteToolExecutor:
    def __init__(self, client: BackendClient):
        self.client = client

    def _normalize_arguments(self, project_id: str, spec: ToolSpec, args: dict[str, Any]) -> dict[str, Any]:
        normalized = dict(args)
        for param in spec.file_parameters:
            value = normalized.get(param.name)
            if isinstance(value, list):
                normalized[param.name] = [resolve(project_id, v, ResolveContext.REMOTE) for v in value]
            elif isinstance(value, str):
                normalized[param.name] = resolve(project_id, value, ResolveContext.REMOTE)
        return normalized

    def execute(self, project_id: str, tool_name: str, args: dict[str, Any]) -> ToolResult:
        spec, failure = _validate(tool_name, args)
        if failure is not None:
            return failure

        arguments = self._normalize_arguments(project_id, spec, args)
        try:
            if tool_name == "list_sandbox_files":
                listing = self.client.list_files(project_id)
                return ToolResult(success=True, message=format_sandbox_listing(listing))
            if tool_name == "get_video_info":
                info = self.client.fetch_video_info(project_id, arguments["inputFile"])
                if info is None:
                    return _tool_failure("EXECUTION_ERROR", "Could not get video info")
                return ToolResult(success=True, message=info.describe())
            result = self.client.call_tool(project_id, tool_name, arguments)
        except BackendError as exc:
            return _tool_failure(
                "BACKEND_ERROR",
                str(exc),
                context={"tool": tool_name, "status_code": exc.status_code},
            )
        except requests.RequestException as exc:
            logger.warning("Backend unreachable for %s: %s", tool_name, exc)
            return _tool_failure("NETWORK_ERROR", f"Backend unreachable: {exc}", context={"tool": tool_name})

        if not result.success:
            return _tool_failure(
                "EXECUTION_ERROR",
                result.message or f"{tool_name} failed",
                context={"tool": tool_name},
                prefix="",
            )

        return ToolResult(
            success=True,
            message=result.message or f"{tool_name} complete",
            output_path=result.output_path,
            output_url=add_cache_bust(result.output_url) if result.output_url else None,
            is_sibling=is_sibling_artifact(tool_name, args),
        )


def build_executor(
    config: VideoAgentConfig,
    runner: MediaRunner | None = None,
    client: BackendClient | None = None,
    sandbox_root: str | Path | None = None,
) -> ToolExecutor:
    if config.execution_mode == "remote":
        return RemoteToolExecutor(client or BackendClient.from_env())
    return LocalToolExecutor(runner=runner, sandbox_root=sandbox_root)
