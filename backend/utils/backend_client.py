"""HTTP client for the remote ffmpeg execution backend."""
from __future__ import annotations

import logging
import mimetypes
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import requests

from models.media_models import MediaInfo

logger = logging.getLogger(__name__)

DEFAULT_BACKEND_URL = "http://localhost:8080"


class BackendError(Exception):
    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


@dataclass
class UploadResult:
    remote_path: str
    remote_url: str


@dataclass
class BackendToolResult:
    success: bool
    message: str
    output_path: str | None = None
    output_url: str | None = None


def guess_content_type(filename: str) -> str:
    guessed, _ = mimetypes.guess_type(filename)
    return guessed or "application/octet-stream"


class BackendClient:
    def __init__(
        self,
        base_url: str | None = None,
        timeout_seconds: float | None = None,
        session: requests.Session | None = None,
    ):
        self.base_url = (base_url or DEFAULT_BACKEND_URL).rstrip("/")
        self.timeout_seconds = timeout_seconds or 120
        self.session = session or requests.Session()

    @classmethod
    def from_env(cls) -> BackendClient:
        return cls(
            base_url=os.getenv("VIDEO_BACKEND_URL", DEFAULT_BACKEND_URL),
            timeout_seconds=float(os.getenv("VIDEO_BACKEND_TIMEOUT_SECONDS", "120")),
        )

    def _url(self, path: str) -> str:
        return f"{self.base_url}{path}"

    def _handle_json(self, response: requests.Response) -> Any:
        try:
            data = response.json()
        except ValueError:
            data = None

        if not response.ok:
            detail = None
            if isinstance(data, dict):
                detail = data.get("detail") or data.get("message")
            if detail is not None and not isinstance(detail, str):
                detail = str(detail)
            message = detail or f"Backend request failed with status {response.status_code}"
            logger.warning("Backend request %s failed: %s", response.url, message)
            raise BackendError(message, status_code=response.status_code)

        if data is None:
            raise BackendError("Backend returned a non-JSON response", status_code=response.status_code)
        return data

    def ensure_project(self, project_id: str, title: str | None = None) -> None:
        response = self.session.post(
            self._url("/projects"),
            json={"project_id": project_id, "title": title},
            timeout=self.timeout_seconds,
        )
        self._handle_json(response)

    def upload_file(
        self,
        project_id: str,
        file_path: str | Path,
        filename: str,
        kind: str,
    ) -> UploadResult:
        with open(file_path, "rb") as handle:
            response = self.session.post(
                self._url(f"/projects/{project_id}/files"),
                data={"file_type": kind},
                files={"file": (filename, handle, guess_content_type(filename))},
                headers={"Accept": "application/json"},
                timeout=self.timeout_seconds,
            )
        data = self._handle_json(response)
        return UploadResult(remote_path=data["file_path"], remote_url=data["file_url"])

    def call_tool(self, project_id: str, tool_name: str, arguments: dict[str, Any]) -> BackendToolResult:
        response = self.session.post(
            self._url(f"/projects/{project_id}/tools/{tool_name}"),
            json=arguments,
            headers={"Accept": "application/json"},
            timeout=self.timeout_seconds,
        )
        data = self._handle_json(response)
        return BackendToolResult(
            success=bool(data.get("success")),
            message=data.get("message") or "",
            output_path=data.get("output_path"),
            output_url=data.get("output_url"),
        )

    def fetch_video_info(self, project_id: str, reference: str) -> MediaInfo | None:
        response = self.session.post(
            self._url(f"/projects/{project_id}/video-info"),
            json={"input": reference},
            headers={"Accept": "application/json"},
            timeout=self.timeout_seconds,
        )
        data = self._handle_json(response)
        info = data.get("info")
        return MediaInfo.from_backend(info) if info else None

    def list_files(self, project_id: str) -> dict[str, list[str]]:
        response = self.session.get(
            self._url(f"/projects/{project_id}/files"),
            headers={"Accept": "application/json"},
            timeout=self.timeout_seconds,
        )
        data = self._handle_json(response)
        return {
            "input": list(data.get("input") or []),
            "output": list(data.get("output") or []),
        }

    def close(self) -> None:
        self.session.close()
