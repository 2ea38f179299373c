from __future__ import annotations

import os
from dataclasses import dataclass

EXECUTION_MODES = ("local", "remote")


@dataclass
class VideoAgentConfig:
    model: str = "qwen2.5:3b-instruct"
    base_url: str = "http://localhost:11434/v1"
    api_key: str = "local"
    execution_mode: str = "local"
    temperature: float = 0.2
    max_tokens: int = 1024
    max_history_messages: int = 20

    @classmethod
    def from_env(cls) -> VideoAgentConfig:
        mode = os.getenv("VIDEO_AGENT_EXECUTION_MODE", "local").strip().lower()
        if mode not in EXECUTION_MODES:
            raise ValueError(
                f"VIDEO_AGENT_EXECUTION_MODE must be one of {', '.join(EXECUTION_MODES)}, got {mode!r}"
            )
        return cls(
            model=os.getenv("VIDEO_AGENT_MODEL", "qwen2.5:3b-instruct"),
            base_url=os.getenv("VIDEO_AGENT_BASE_URL", "http://localhost:11434/v1"),
            api_key=os.getenv("VIDEO_AGENT_API_KEY", "local") or "local",
            execution_mode=mode,
            temperature=float(os.getenv("VIDEO_AGENT_TEMPERATURE", "0.2")),
            max_tokens=int(os.getenv("VIDEO_AGENT_MAX_TOKENS", "1024")),
            max_history_messages=int(os.getenv("VIDEO_AGENT_MAX_HISTORY", "20")),
        )
