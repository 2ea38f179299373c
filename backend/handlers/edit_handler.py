"""REST API endpoints for conversational video edits.

Provides endpoints for:
- Sending an edit request and waiting for the final result
- Streaming tokens and tool progress as NDJSON while a turn runs
"""

import json
import logging
import queue
import threading

from fastapi import APIRouter, Depends, HTTPException
from starlette.concurrency import run_in_threadpool
from starlette.responses import StreamingResponse

from agent.video_agent import (
    CancellationToken,
    EditTurnResult,
    GenerationCancelledError,
    TurnInProgressError,
)
from agent.video_agent.types import ProjectMetadata
from dependencies.project import require_project
from dependencies.services import AgentServices, get_services
from models.api_models import EditRequestBody, EditResponse
from operators.project_operator import ProjectNotFoundError

logger = logging.getLogger(__name__)

router = APIRouter()


def _error_event(event_id: str, label: str, exc: Exception) -> dict:
    return {
        "event_id": event_id,
        "event_type": "error",
        "status": "failed",
        "label": label,
        "summary": str(exc),
        "created_at": None,
        "meta": {},
    }


def _run_edit_in_thread(
    services: AgentServices,
    project_id: str,
    message: str,
    on_token=None,
    on_event=None,
    cancel: CancellationToken | None = None,
) -> EditTurnResult:
    logger.info(
        "edit_run_start project_id=%s message_len=%d",
        project_id,
        len(message or ""),
    )
    try:
        result = services.orchestrator.orchestrate_edit(
            project_id,
            message,
            on_token=on_token,
            on_event=on_event,
            cancel=cancel,
        )
    except (TurnInProgressError, GenerationCancelledError) as exc:
        logger.info("edit_run_rejected project_id=%s reason=%s", project_id, exc)
        raise
    except Exception:
        logger.exception("edit_run_failed project_id=%s", project_id)
        raise
    logger.info(
        "edit_run_complete project_id=%s tool_calls=%d output_changed=%s",
        project_id,
        len(result.tool_invocations),
        result.output_changed,
    )
    return result


def _stream_edit_events(services: AgentServices, project_id: str, message: str):
    events: queue.Queue[dict | None] = queue.Queue()
    cancel = CancellationToken()

    def _on_token(text: str) -> None:
        events.put({
            "event_id": None,
            "event_type": "token",
            "status": "running",
            "label": None,
            "summary": None,
            "created_at": None,
            "meta": {"text": text},
        })

    def _on_event(event: dict) -> None:
        events.put(event)

    def _runner() -> None:
        try:
            _run_edit_in_thread(
                services,
                project_id,
                message,
                on_token=_on_token,
                on_event=_on_event,
                cancel=cancel,
            )
        except TurnInProgressError as exc:
            events.put(_error_event("error-turn-in-progress", "Edit already in progress", exc))
        except GenerationCancelledError as exc:
            events.put(_error_event("error-cancelled", "Edit cancelled", exc))
        except ProjectNotFoundError as exc:
            events.put(_error_event("error-project-not-found", "Project not found", exc))
        except Exception as exc:
            events.put(_error_event("error-agent-run", "Edit agent failed", exc))
        finally:
            events.put(None)

    threading.Thread(target=_runner, daemon=True).start()

    try:
        while True:
            event = events.get()
            if event is None:
                break
            yield f"{json.dumps(event)}\n"
    finally:
        # Client went away before the turn finished.
        cancel.cancel()


@router.post("", response_model=EditResponse)
async def send_edit_request(
    body: EditRequestBody,
    project: ProjectMetadata = Depends(require_project),
    services: AgentServices = Depends(get_services),
) -> EditResponse:
    """Run one edit turn and return the assistant reply plus the new output."""
    logger.info("edit_request_received project_id=%s", project.id)

    try:
        result = await run_in_threadpool(_run_edit_in_thread, services, project.id, body.message)
    except ProjectNotFoundError:
        raise HTTPException(status_code=404, detail="Project not found")
    except TurnInProgressError as exc:
        raise HTTPException(status_code=409, detail=str(exc))

    return EditResponse(
        ok=result.error is None,
        message=result.message,
        tool_invocations=result.tool_invocations,
        current_output=result.current_output,
        playback_url=result.playback_url,
        output_changed=result.output_changed,
        error=result.error,
    )


@router.post("/stream")
async def stream_edit_request(
    body: EditRequestBody,
    project: ProjectMetadata = Depends(require_project),
    services: AgentServices = Depends(get_services),
) -> StreamingResponse:
    logger.info("edit_stream_request_received project_id=%s", project.id)

    event_stream = _stream_edit_events(services, project.id, body.message)
    return StreamingResponse(event_stream, media_type="application/x-ndjson")
