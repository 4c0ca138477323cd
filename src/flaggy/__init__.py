"""flaggy feature flag client library."""

from .backoff import compute_backoff_delay
from .client import CONNECTED_EVENT, FlagClient
from .config import FlaggyConfig
from .exceptions import FlaggyError, FlaggyErrorCodes, is_cancellation
from .http_client import BatchEvaluator
from .logger import configure_logging
from .models import (
    ABSENT,
    BatchEvaluateResponse,
    ClientState,
    EvaluatedFlag,
    EvaluationContext,
    FlagValue,
    StreamEvent,
)
from .parser import EventStreamParser
from .stream import ConnectionState, StreamManager

__all__ = [
    "ABSENT",
    "BatchEvaluateResponse",
    "BatchEvaluator",
    "CONNECTED_EVENT",
    "ClientState",
    "ConnectionState",
    "EvaluatedFlag",
    "EvaluationContext",
    "EventStreamParser",
    "FlagClient",
    "FlagValue",
    "FlaggyConfig",
    "FlaggyError",
    "FlaggyErrorCodes",
    "StreamEvent",
    "StreamManager",
    "compute_backoff_delay",
    "configure_logging",
    "is_cancellation",
]
