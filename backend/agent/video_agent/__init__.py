from .agent import EditOrchestrator, TurnInProgressError, reconcile_outputs
from .config import VideoAgentConfig
from .executor import LocalToolExecutor, RemoteToolExecutor, ToolExecutor, build_executor
from .gateway import (
    AgentNotReadyError,
    CancellationToken,
    GatewayError,
    GatewayState,
    GatewayStatus,
    GenerationCancelledError,
    ModelGateway,
)
from .tools import ToolSpec, get_tool, list_tools, validate_arguments
from .types import EditTurnResult, ToolResult

__all__ = [
    "AgentNotReadyError",
    "CancellationToken",
    "EditOrchestrator",
    "EditTurnResult",
    "GatewayError",
    "GatewayState",
    "GatewayStatus",
    "GenerationCancelledError",
    "LocalToolExecutor",
    "ModelGateway",
    "RemoteToolExecutor",
    "ToolExecutor",
    "ToolResult",
    "ToolSpec",
    "TurnInProgressError",
    "VideoAgentConfig",
    "build_executor",
    "get_tool",
    "list_tools",
    "reconcile_outputs",
    "validate_arguments",
]
