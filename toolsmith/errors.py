from typing import Any, Dict, Optional


class ToolsmithError(Exception):
    code = "TOOLSMITH_ERROR"

    def __init__(self, message: str, code: Optional[str] = None, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.code = code or self.code
        self.context = context or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"error": str(self), "code": self.code, "context": self.context}


class ValidationError(ToolsmithError):
    """Bad or missing required input."""
    code = "VALIDATION"


class NotFound(ToolsmithError):
    code = "NOT_FOUND"


class NoHarness(ToolsmithError):
    code = "NO_HARNESS"


class TransientError(ToolsmithError):
    """Recoverable I/O failure (timeouts, refused connections, unavailable servers)."""
    code = "TRANSIENT"


class ModelCallFailed(ToolsmithError):
    code = "MODEL_CALL_FAILED"


class ScriptTimeout(ToolsmithError):
    code = "SCRIPT_TIMEOUT"


class ScriptExecutionFailed(ToolsmithError):
    code = "SCRIPT_EXECUTION_FAILED"


class GlobalRetryExceeded(ToolsmithError):
    code = "GLOBAL_RETRY_EXCEEDED"


class PlanError(ToolsmithError):
    """The model's decomposition could not be read as a list of subtasks."""
    code = "PLAN_ERROR"


class ConfigError(ToolsmithError):
    code = "CONFIG"
