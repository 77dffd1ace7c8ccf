# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
flakebump Exception Hierarchy

Exception Hierarchy:
    FlakeBumpError (base)
    ├── ConfigError
    │   └── ConfigValidationError
    ├── TargetError
    │   ├── TargetNotFoundError
    │   ├── InputNotFoundError
    │   └── PatternNotFoundError
    ├── OracleUnavailableError
    ├── SessionAborted
    └── ExternalActionFailedError

Everything except ConfigError is scoped to a single flake target: the session
records it against that target and moves on to the next one.
"""

from typing import Any, Dict, List, Optional

# ============================================================================
# Base Exceptions
# ============================================================================


class FlakeBumpError(Exception):
    """Base exception for all flakebump errors"""

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
    ):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.cause = cause

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/reporting"""
        result = {
            "type": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
        }

        if self.cause:
            result["cause"] = {
                "type": self.cause.__class__.__name__,
                "message": str(self.cause),
            }

        return result

    def __str__(self):
        base = self.message
        if self.cause:
            base += f" (caused by: {self.cause})"
        return base


# ============================================================================
# Configuration Errors
# ============================================================================


class ConfigError(FlakeBumpError):
    """Configuration-related errors"""


class ConfigValidationError(ConfigError):
    """Configuration validation failed"""

    def __init__(
        self,
        message: str,
        errors: Optional[List[Dict[str, Any]]] = None,
        **kwargs,
    ):
        super().__init__(message, **kwargs)
        self.errors = errors or []

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result["errors"] = self.errors
        return result


# ============================================================================
# Target Errors
# ============================================================================


class TargetError(FlakeBumpError):
    """Errors tied to one flake directory and optionally one input"""

    def __init__(
        self,
        message: str,
        directory: Optional[str] = None,
        input_name: Optional[str] = None,
        **kwargs,
    ):
        super().__init__(message, **kwargs)
        self.directory = directory
        self.input_name = input_name

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result.update(
            {
                "directory": self.directory,
                "input_name": self.input_name,
            }
        )
        return result


class TargetNotFoundError(TargetError):
    """Explicit target path is missing or holds no flake.nix"""


class InputNotFoundError(TargetError):
    """Named input is not declared by the flake"""


class PatternNotFoundError(TargetError):
    """The input's url declaration could not be located in flake.nix"""


# ============================================================================
# Collaborator Errors
# ============================================================================


class OracleUnavailableError(FlakeBumpError):
    """Revision metadata could not be obtained"""

    def __init__(
        self,
        message: str,
        source: Optional[str] = None,
        input_name: Optional[str] = None,
        **kwargs,
    ):
        super().__init__(message, **kwargs)
        self.source = source
        self.input_name = input_name

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result.update(
            {
                "source": self.source,
                "input_name": self.input_name,
            }
        )
        return result


class SessionAborted(FlakeBumpError):
    """The user interrupted a prompt (Ctrl-C or end of input)"""


class ExternalActionFailedError(FlakeBumpError):
    """Lock update, environment reload or git command failed"""

    def __init__(
        self,
        message: str,
        command: Optional[List[str]] = None,
        returncode: Optional[int] = None,
        **kwargs,
    ):
        super().__init__(message, **kwargs)
        self.command = command or []
        self.returncode = returncode

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result.update(
            {
                "command": self.command,
                "returncode": self.returncode,
            }
        )
        return result


# ============================================================================
# Retry Decorator
# ============================================================================


def retry_on_error(
    max_retries: int = 3,
    delay_ms: int = 1000,
    backoff: float = 2.0,
    exceptions: tuple = (Exception,),
):
    """
    Retry decorator with exponential backoff

    Args:
        max_retries: Maximum number of retries
        delay_ms: Initial delay in milliseconds
        backoff: Backoff multiplier
        exceptions: Tuple of exceptions to catch

    Usage:
        @retry_on_error(max_retries=2, exceptions=(httpx.TransportError,))
        def fetch():
            ...
    """
    import time
    from functools import wraps

    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            delay = delay_ms / 1000

            for attempt in range(max_retries + 1):
                try:
                    return func(*args, **kwargs)
                except exceptions:
                    if attempt >= max_retries:
                        raise
                    time.sleep(delay)
                    delay *= backoff

        return wrapper

    return decorator
