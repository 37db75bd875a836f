"""
Core module for meshcall.
Contains configuration, logging, validation and the error hierarchy.
"""

from .config import ServerConfig, ClientConfig
from .logging import setup_logging, debug_log, LoggerMixin
from .exceptions import (
    MeshCallError,
    RoomFullError,
    MediaError,
    MediaAccessDenied,
    UserCancelled,
    SignalingApplyError,
    ConnectionTerminal,
)
from .validation_utils import ValidationUtils

__all__ = [
    'ServerConfig',
    'ClientConfig',
    'setup_logging',
    'debug_log',
    'LoggerMixin',
    'MeshCallError',
    'RoomFullError',
    'MediaError',
    'MediaAccessDenied',
    'UserCancelled',
    'SignalingApplyError',
    'ConnectionTerminal',
    'ValidationUtils'
]
