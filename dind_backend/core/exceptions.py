"""
dind_backend/core/exceptions.py
Custom exceptions for the backend service
"""

from typing import Optional


class ServiceException(Exception):
    """Base exception for all backend service errors"""

    def __init__(
        self,
        message: str,
        error_code: str = "UNKNOWN_ERROR",
        details: Optional[dict] = None
    ):
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict:
        """Convert exception to dictionary for logging/response"""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details
        }


# ============================================================================
# Dependency Exceptions
# ============================================================================

class DependencyConnectionError(ServiceException, ConnectionError):
    """Handshake with an external dependency failed (transient, retryable)"""

    def __init__(self, dependency: str, reason: str, attempts: int = 1):
        super().__init__(
            message=f"Could not connect to '{dependency}': {reason}",
            error_code="DEPENDENCY_CONNECTION_FAILED",
            details={"dependency": dependency, "reason": reason, "attempts": attempts}
        )


class MandatoryDependencyError(ServiceException):
    """Mandatory dependencies failed and the fail-fast policy is enabled"""

    def __init__(self, dependencies: list):
        super().__init__(
            message=f"Mandatory dependencies unavailable: {', '.join(dependencies)}",
            error_code="MANDATORY_DEPENDENCY_FAILED",
            details={"dependencies": list(dependencies)}
        )


# ============================================================================
# Configuration Exceptions
# ============================================================================

class ConfigurationError(ServiceException):
    """Invalid or missing configuration (fatal at startup)"""

    def __init__(self, setting: str, reason: str):
        super().__init__(
            message=f"Invalid configuration '{setting}': {reason}",
            error_code="CONFIGURATION_ERROR",
            details={"setting": setting, "reason": reason}
        )


# ============================================================================
# Shutdown Exceptions
# ============================================================================

class ShutdownTimeoutError(ServiceException):
    """Drain did not finish in time (non-fatal, forces stop)"""

    def __init__(self, timeout_seconds: float, pending: Optional[list] = None):
        super().__init__(
            message=f"Shutdown drain exceeded {timeout_seconds} seconds",
            error_code="SHUTDOWN_TIMEOUT",
            details={"timeout_seconds": timeout_seconds, "pending": pending or []}
        )


# ============================================================================
# Export
# ============================================================================

__all__ = [
    "ServiceException",
    "DependencyConnectionError",
    "MandatoryDependencyError",
    "ConfigurationError",
    "ShutdownTimeoutError",
]
