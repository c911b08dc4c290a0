"""Structured error hierarchy for the agent loop."""

from __future__ import annotations


class LoopError(Exception):
    def __init__(self, code: str, message: str, cause: Exception | None = None) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.cause = cause

    @classmethod
    def wrap(cls, err: BaseException) -> LoopError:
        if isinstance(err, LoopError):
            return err
        cause = err if isinstance(err, Exception) else None
        return LoopError("UNKNOWN", str(err) or type(err).__name__, cause)


class ConfigurationError(LoopError):
    def __init__(self, message: str, cause: Exception | None = None) -> None:
        super().__init__("CONFIGURATION_ERROR", message, cause)


class InvalidStateError(LoopError):
    """An operation was requested in a loop status that does not allow it."""

    def __init__(self, status: str, message: str) -> None:
        super().__init__("INVALID_STATE", message)
        self.status = status


class DecisionServiceError(LoopError):
    def __init__(
        self,
        code: str,
        provider: str,
        message: str,
        status_code: int | None = None,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(code, message, cause)
        self.provider = provider
        self.status_code = status_code


class DecisionServiceUnavailableError(DecisionServiceError):
    def __init__(self, provider: str) -> None:
        super().__init__(
            "DECISION_SERVICE_UNAVAILABLE",
            provider,
            f"Decision service {provider} is unavailable (circuit open)",
        )


class ToolError(LoopError):
    def __init__(
        self, code: str, tool_name: str, message: str, cause: Exception | None = None
    ) -> None:
        super().__init__(code, message, cause)
        self.tool_name = tool_name


class ToolNotFoundError(ToolError):
    def __init__(self, tool_name: str) -> None:
        super().__init__("TOOL_NOT_FOUND", tool_name, f"Tool '{tool_name}' not found")


class ToolTimeoutError(ToolError):
    def __init__(self, tool_name: str, timeout_ms: int) -> None:
        super().__init__(
            "TOOL_TIMEOUT", tool_name, f'Tool "{tool_name}" timed out after {timeout_ms}ms'
        )
        self.timeout_ms = timeout_ms
