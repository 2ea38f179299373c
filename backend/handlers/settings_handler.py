import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from agent.video_agent import GatewayError
from dependencies.services import AgentServices, get_db, get_services
from models.api_models import AgentStatusResponse, SettingsResponse, SettingsUpdateRequest
from operators.settings_operator import (
    AppSettings,
    ThemePreference,
    load_settings,
    set_notifications_enabled,
    set_theme,
)

router = APIRouter(tags=["settings"])
logger = logging.getLogger(__name__)


def _settings_response(settings: AppSettings) -> SettingsResponse:
    return SettingsResponse(
        theme=settings.theme.value,
        notifications_enabled=settings.notifications_enabled,
    )


def _status_response(services: AgentServices) -> AgentStatusResponse:
    status = services.gateway.status
    return AgentStatusResponse(
        state=status.state.value,
        progress=status.progress,
        error=status.error,
        model=services.config.model,
        execution_mode=services.config.execution_mode,
    )


@router.get("/settings", response_model=SettingsResponse)
async def settings_get(db: Session = Depends(get_db)):
    return _settings_response(load_settings(db))


@router.put("/settings", response_model=SettingsResponse)
async def settings_update(
    request: SettingsUpdateRequest,
    db: Session = Depends(get_db),
    services: AgentServices = Depends(get_services),
):
    settings = load_settings(db)
    if request.theme is not None:
        settings = set_theme(db, ThemePreference(request.theme))
    if request.notifications_enabled is not None:
        settings = await run_in_threadpool(
            set_notifications_enabled, db, request.notifications_enabled, services.notifier
        )
    return _settings_response(settings)


@router.get("/agent/status", response_model=AgentStatusResponse)
async def agent_status(services: AgentServices = Depends(get_services)):
    return _status_response(services)


@router.post("/agent/prepare", response_model=AgentStatusResponse)
async def agent_prepare(services: AgentServices = Depends(get_services)):
    try:
        await run_in_threadpool(services.gateway.prepare)
    except GatewayError as exc:
        logger.warning("Agent preparation failed: %s", exc)
    return _status_response(services)
