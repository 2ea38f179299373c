from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from fastapi import Request
from sqlalchemy.orm import Session, sessionmaker

from agent.video_agent import EditOrchestrator, ModelGateway, VideoAgentConfig, build_executor
from agent.video_agent.executor import ToolExecutor
from database.base import SessionLocal
from utils.backend_client import BackendClient
from utils.ffmpeg_exec import FFmpegRunner, MediaRunner
from utils.notifications import Notifier, build_notifier
from utils.sandbox import SANDBOX_ROOT


@dataclass
class AgentServices:
    """Process-wide collaborators shared by the request handlers."""

    config: VideoAgentConfig
    gateway: ModelGateway
    executor: ToolExecutor
    orchestrator: EditOrchestrator
    notifier: Notifier
    runner: MediaRunner
    session_factory: sessionmaker
    sandbox_root: str | Path
    backend: BackendClient | None = None


def build_services(
    config: VideoAgentConfig | None = None,
    session_factory: sessionmaker | None = None,
    sandbox_root: str | Path | None = None,
) -> AgentServices:
    config = config or VideoAgentConfig.from_env()
    session_factory = session_factory or SessionLocal
    sandbox_root = sandbox_root or SANDBOX_ROOT
    runner = FFmpegRunner()
    backend = BackendClient.from_env() if config.execution_mode == "remote" else None
    notifier = build_notifier()
    gateway = ModelGateway(config)
    executor = build_executor(config, runner=runner, client=backend, sandbox_root=sandbox_root)
    orchestrator = EditOrchestrator(
        gateway,
        executor,
        session_factory,
        notifier=notifier,
        sandbox_root=sandbox_root,
        max_history_messages=config.max_history_messages,
    )
    return AgentServices(
        config=config,
        gateway=gateway,
        executor=executor,
        orchestrator=orchestrator,
        notifier=notifier,
        runner=runner,
        session_factory=session_factory,
        sandbox_root=sandbox_root,
        backend=backend,
    )


def get_services(request: Request) -> AgentServices:
    return request.app.state.services


def get_db(request: Request):
    db: Session = get_services(request).session_factory()
    try:
        yield db
    finally:
        db.close()
