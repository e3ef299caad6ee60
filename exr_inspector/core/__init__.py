"""Core services for the EXR inspector: bridge access, cancellation, configuration."""
from .bridge import attach_host, current_host, detach_host
from .cancellation import CancellationToken, OperationKind, PendingOperation, ProgressChannel
from .commands import CommandValidationError
from .gateway import BridgeUnavailableError, CommandGateway, is_cancellation_error
from .logging_config import LoggingConfigurator, LoggingOptions, LogRelayHandler
from .settings_manager import ControllerConfig, SettingsManager
from .threading import ThreadController

__all__ = [
    "attach_host",
    "current_host",
    "detach_host",
    "BridgeUnavailableError",
    "CancellationToken",
    "CommandGateway",
    "CommandValidationError",
    "ControllerConfig",
    "LoggingConfigurator",
    "LoggingOptions",
    "LogRelayHandler",
    "OperationKind",
    "PendingOperation",
    "ProgressChannel",
    "SettingsManager",
    "ThreadController",
    "is_cancellation_error",
]
