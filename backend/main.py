import logging
import os
from pathlib import Path

from dotenv import load_dotenv

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from database.base import init_db
from dependencies.services import AgentServices, build_services
from handlers.edit_handler import router as edit_router
from handlers.project_handler import router as project_router
from handlers.settings_handler import router as settings_router

ROOT_DIR = Path(__file__).resolve().parents[1]
load_dotenv(ROOT_DIR / ".env")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)


def _attach_file_handler(
    logger_name: str,
    log_file_path: Path,
    level_name: str | None = None,
) -> None:
    logger_level = (level_name or LOG_LEVEL).upper()
    logger_level_value = getattr(logging, logger_level, logging.INFO)

    log_file_path.parent.mkdir(parents=True, exist_ok=True)
    file_handler = logging.FileHandler(log_file_path, encoding="utf-8")
    file_handler.setLevel(logger_level_value)
    file_handler.setFormatter(
        logging.Formatter("%(asctime)s %(levelname)s [%(name)s] %(message)s")
    )

    target_logger = logging.getLogger(logger_name)
    if not any(
        isinstance(handler, logging.FileHandler)
        and getattr(handler, "baseFilename", None) == str(log_file_path)
        for handler in target_logger.handlers
    ):
        target_logger.addHandler(file_handler)
    target_logger.setLevel(logger_level_value)


VIDEO_AGENT_LOG_FILE = os.getenv("VIDEO_AGENT_LOG_FILE", "").strip()
VIDEO_AGENT_LOG_LEVEL = os.getenv("VIDEO_AGENT_LOG_LEVEL", "").strip() or None
if VIDEO_AGENT_LOG_FILE:
    log_path = Path(VIDEO_AGENT_LOG_FILE)
    if not log_path.is_absolute():
        log_path = ROOT_DIR / log_path
    _attach_file_handler("agent.video_agent", log_path, level_name=VIDEO_AGENT_LOG_LEVEL)
    _attach_file_handler("handlers.edit_handler", log_path, level_name=VIDEO_AGENT_LOG_LEVEL)


def create_app(services: AgentServices | None = None) -> FastAPI:
    if services is None:
        init_db()
        services = build_services()

    app = FastAPI(title="ChatCut Video Agent")
    app.state.services = services

    app.include_router(project_router)
    app.include_router(edit_router, prefix="/projects/{project_id}/edit", tags=["edit"])
    app.include_router(settings_router)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[
            "http://localhost:3000",
            "http://localhost:5173",
            "http://localhost:8081",
        ],
        allow_origin_regex=r"^null$",
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["*"],
    )
    return app


app = create_app()

if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
