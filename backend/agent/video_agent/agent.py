from __future__ import annotations

import logging
import re
import threading
from pathlib import Path
from typing import Any, Callable

from sqlalchemy.orm import Session, sessionmaker

from database.models import AgentRun
from operators import project_operator
from operators.settings_operator import load_settings
from utils.notifications import Notifier, NullNotifier
from utils.paths import ResolveContext, resolve

from .executor import ToolExecutor
from .gateway import (
    CancellationToken,
    GatewayError,
    GenerationCancelledError,
    ModelGateway,
)
from .prompts import build_system_context
from .tools import list_tools
from .types import (
    ChatMessage,
    EditTurnResult,
    MessageRole,
    ProjectMetadata,
    ToolInvocationRecord,
    ToolResult,
)

logger = logging.getLogger(__name__)

EventSink = Callable[[dict[str, Any]], None]

_EDIT_KEYWORDS = re.compile(
    r"\b(trim|cut|crop|mute|unmute|speed|faster|slower|slow|fast|bright|brighter|darker|"
    r"contrast|saturat\w*|blur|sharpen|gray|grey|black and white|sepia|vignette|filter|"
    r"zoom|text|title|caption|overlay|transition|fade|wipe|dissolve|volume|louder|quieter|"
    r"audio|sound|music|scale|resize|concat|merge|join|combine|shorten|remove)\b",
    re.IGNORECASE,
)

NO_EDIT_NOTE = (
    "No edit was applied. Try naming the change more specifically, "
    "for example \"trim to the first 10 seconds\" or \"make it brighter\"."
)


class TurnInProgressError(Exception):
    pass


def looks_like_edit_request(message: str) -> bool:
    return bool(_EDIT_KEYWORDS.search(message or ""))


def reconcile_outputs(
    project_id: str,
    current_output: str | None,
    current_playback: str | None,
    results: list[ToolResult],
    sandbox_root: str | Path | None = None,
) -> tuple[str | None, str | None]:
    """Fold tool results into (canonical output, playback reference).

    The last successful result with an output wins. Failed calls and
    sibling artifacts never move either reference.
    """
    output, playback = current_output, current_playback
    for result in results:
        if not result.success or result.is_sibling:
            continue
        reference = result.output_path or result.output_url
        if not reference:
            continue
        output = reference
        candidate = result.output_url or resolve(
            project_id, result.output_path, ResolveContext.LOCAL, sandbox_root
        )
        if candidate != playback:
            playback = candidate
    return output, playback


def compose_assistant_message(
    model_text: str,
    invocations: list[ToolInvocationRecord],
    user_message: str,
) -> str:
    parts: list[str] = []
    if model_text.strip():
        parts.append(model_text.strip())
    if invocations:
        lines = []
        for record in invocations:
            status = "ok" if record.success else "failed"
            lines.append(f"- {record.tool_name} ({status}): {record.result or ''}".rstrip())
        parts.append("\n".join(lines))
    elif looks_like_edit_request(user_message):
        parts.append(NO_EDIT_NOTE)
    return "\n\n".join(parts) or "I wasn't able to produce a response. Please try again."


def _history_messages(messages: list[ChatMessage], limit: int) -> list[dict[str, str]]:
    history = []
    for msg in messages:
        if msg.role in (MessageRole.USER, MessageRole.ASSISTANT) and msg.content:
            history.append({"role": msg.role.value, "content": msg.content})
    return history[-limit:] if limit > 0 else history


class EditOrchestrator:
    """Runs one conversational edit turn against a project."""

    def __init__(
        self,
        gateway: ModelGateway,
        executor: ToolExecutor,
        session_factory: sessionmaker,
        notifier: Notifier | None = None,
        sandbox_root: str | Path | None = None,
        max_history_messages: int = 20,
    ):
        self.gateway = gateway
        self.executor = executor
        self.session_factory = session_factory
        self.notifier = notifier or NullNotifier()
        self.sandbox_root = sandbox_root
        self.max_history_messages = max_history_messages
        self._turn_locks: dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    def _turn_lock(self, project_id: str) -> threading.Lock:
        with self._registry_lock:
            return self._turn_locks.setdefault(project_id, threading.Lock())

    def orchestrate_edit(
        self,
        project_id: str,
        message: str,
        on_token: Callable[[str], None] | None = None,
        on_event: EventSink | None = None,
        cancel: CancellationToken | None = None,
    ) -> EditTurnResult:
        lock = self._turn_lock(project_id)
        if not lock.acquire(blocking=False):
            raise TurnInProgressError(f"An edit is already running for project {project_id}")
        db = self.session_factory()
        try:
            return self._run_turn(db, project_id, message, on_token, on_event, cancel)
        finally:
            db.close()
            lock.release()

    def _emit(self, on_event: EventSink | None, event: dict[str, Any]) -> None:
        if on_event is None:
            return
        try:
            on_event(event)
        except Exception:
            logger.exception("Edit event sink failed")

    def _run_turn(
        self,
        db: Session,
        project_id: str,
        message: str,
        on_token: Callable[[str], None] | None,
        on_event: EventSink | None,
        cancel: CancellationToken | None,
    ) -> EditTurnResult:
        project = project_operator.get_project(db, project_id)
        history = _history_messages(project.chat_history, self.max_history_messages)
        logger.info("edit_turn_start project_id=%s message_len=%d", project_id, len(message))

        active_input = project_operator.active_input_reference(project)
        system_context = build_system_context(project, active_input)

        # The user message is only persisted once the model has answered, so a
        # cancelled turn leaves the project untouched.
        try:
            completion = self.gateway.complete(
                system_context,
                history,
                message,
                list_tools(),
                on_token=on_token,
                cancel=cancel,
            )
        except GenerationCancelledError:
            logger.info("edit_turn_cancelled project_id=%s", project_id)
            raise
        except GatewayError as exc:
            logger.warning("Model gateway failed for project %s: %s", project_id, exc)
            return self._finish_with_error(
                db, project, message, f"Sorry, I couldn't process that request: {exc}", on_event
            )
        except Exception as exc:
            logger.exception("Unexpected model failure for project %s", project_id)
            return self._finish_with_error(
                db, project, message, f"Sorry, something went wrong: {exc}", on_event
            )

        project_operator.append_message(db, project_id, MessageRole.USER, message)

        results: list[ToolResult] = []
        invocations: list[ToolInvocationRecord] = []
        for index, call in enumerate(completion.tool_calls):
            self._emit(on_event, {
                "event_id": f"tool-{index}-start",
                "event_type": "tool_started",
                "status": "running",
                "label": call.name,
                "summary": None,
                "created_at": None,
                "meta": {"arguments": call.arguments},
            })
            try:
                result = self.executor.execute(project_id, call.name, call.arguments)
            except Exception as exc:
                logger.exception("Tool %s raised for project %s", call.name, project_id)
                result = ToolResult(success=False, message=f"Error executing {call.name}: {exc}")
            results.append(result)
            invocations.append(ToolInvocationRecord(
                tool_name=call.name,
                arguments=call.arguments,
                result=result.message,
                success=result.success,
                output_path=result.output_path,
                output_url=result.output_url,
            ))
            self._emit(on_event, {
                "event_id": f"tool-{index}-done",
                "event_type": "tool_completed",
                "status": "completed" if result.success else "failed",
                "label": call.name,
                "summary": result.message,
                "created_at": None,
                "meta": {
                    "output_path": result.output_path,
                    "output_url": result.output_url,
                    "error": result.error.to_response() if result.error else None,
                },
            })

        new_output, new_playback = reconcile_outputs(
            project_id,
            project.current_output,
            project.current_playback_url,
            results,
            self.sandbox_root,
        )
        output_changed = bool(new_output) and new_output != project.current_output
        playback_changed = bool(new_playback) and new_playback != project.current_playback_url
        if output_changed or playback_changed:
            project_operator.set_current_output(db, project_id, new_output, playback_url=new_playback)
        if output_changed:
            self._notify(db, project.title)

        text = compose_assistant_message(completion.text, invocations, message)
        project_operator.append_message(
            db, project_id, MessageRole.ASSISTANT, text, tool_invocations=invocations
        )
        _log_run(db, project_id, invocations, text)

        result = EditTurnResult(
            project_id=project_id,
            message=text,
            tool_invocations=invocations,
            current_output=new_output,
            playback_url=new_playback,
            output_changed=output_changed,
        )
        logger.info(
            "edit_turn_complete project_id=%s tool_calls=%d output_changed=%s",
            project_id,
            len(invocations),
            output_changed,
        )
        self._emit(on_event, {
            "event_id": f"final-{project_id}",
            "event_type": "final_result",
            "status": "completed",
            "label": "Final result ready",
            "summary": None,
            "created_at": None,
            "meta": result.model_dump(mode="json"),
        })
        return result

    def _finish_with_error(
        self,
        db: Session,
        project: ProjectMetadata,
        user_message: str,
        text: str,
        on_event: EventSink | None,
    ) -> EditTurnResult:
        project_operator.append_message(db, project.id, MessageRole.USER, user_message)
        project_operator.append_message(db, project.id, MessageRole.ASSISTANT, text)
        result = EditTurnResult(
            project_id=project.id,
            message=text,
            current_output=project.current_output,
            playback_url=project.current_playback_url,
            error=text,
        )
        self._emit(on_event, {
            "event_id": f"final-{project.id}",
            "event_type": "final_result",
            "status": "failed",
            "label": "Model unavailable",
            "summary": text,
            "created_at": None,
            "meta": result.model_dump(mode="json"),
        })
        return result

    def _notify(self, db: Session, project_title: str | None) -> None:
        try:
            if not load_settings(db).notifications_enabled:
                return
            self.notifier.send_edit_complete(project_title)
        except Exception as exc:
            logger.warning("Edit notification failed: %s", exc)


def _log_run(
    db: Session,
    project_id: str,
    invocations: list[ToolInvocationRecord],
    final_message: str,
) -> None:
    try:
        run = AgentRun(
            project_id=project_id,
            trace={
                "agent": "video_agent",
                "tool_calls": [record.model_dump(mode="json") for record in invocations],
            },
            final_message=final_message,
        )
        db.add(run)
        db.commit()
    except Exception as exc:
        logger.error("Failed to log agent run: %s", exc)
        db.rollback()
