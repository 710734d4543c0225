"""
Error taxonomy for agent runs.

Transient model errors are retried locally by the run. Everything else is
reported on the event stream as an Error event; only configuration errors,
the turn limit and exhausted retries end the run.
"""


class AgentRuntimeError(Exception):
    """Base class for all runtime errors."""

    code = "AGENT_RUNTIME_ERROR"

    def __init__(self, message: str, cause: Exception | None = None):
        super().__init__(message)
        self.message = message
        self.cause = cause

    @classmethod
    def wrap(cls, err: Exception) -> "AgentRuntimeError":
        if isinstance(err, AgentRuntimeError):
            return err
        return cls(str(err) or err.__class__.__name__, err)


class TransientModelError(AgentRuntimeError):
    """A model call failed in a way that is worth retrying."""

    code = "TRANSIENT_MODEL_ERROR"


class ModelError(AgentRuntimeError):
    """A model call failed and must not be retried."""

    code = "MODEL_ERROR"


class ToolExecutionError(AgentRuntimeError):
    code = "TOOL_EXECUTION_ERROR"

    def __init__(
        self,
        tool_name: str,
        message: str,
        call_id: str | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message, cause)
        self.tool_name = tool_name
        self.call_id = call_id


class ApprovalDenied(ToolExecutionError):
    code = "APPROVAL_DENIED"

    def __init__(self, tool_name: str, call_id: str | None = None, reason: str = "user"):
        message = f"approval denied for tool: {tool_name}"
        if reason != "user":
            message += f" ({reason})"
        super().__init__(tool_name, message, call_id=call_id)
        self.reason = reason


class ContextOverflowError(AgentRuntimeError):
    """Even the minimal prompt (system rules + current turn) exceeds the budget."""

    code = "CONTEXT_OVERFLOW"

    def __init__(self, required_tokens: int, budget: int):
        super().__init__(
            f"minimal context needs ~{required_tokens} tokens, budget is {budget}"
        )
        self.required_tokens = required_tokens
        self.budget = budget


class FatalConfigError(AgentRuntimeError):
    """Invalid run configuration; the run aborts before its first turn."""

    code = "FATAL_CONFIG_ERROR"


class TurnLimitExceeded(AgentRuntimeError):
    code = "TURN_LIMIT_EXCEEDED"

    def __init__(self, max_turns: int):
        super().__init__(f"turn limit exceeded: {max_turns} turns")
        self.max_turns = max_turns


class InterceptorError(AgentRuntimeError):
    code = "INTERCEPTOR_ERROR"

    def __init__(self, interceptor: str, cause: Exception):
        super().__init__(f"interceptor '{interceptor}' failed: {cause}", cause)
        self.interceptor = interceptor
