"""
Approval gate - human decisions for sensitive tool calls.

Tools flagged ``approval_required`` never execute until the caller approves
their call id. Each request carries a deadline; a request still undecided at
its deadline resolves as denied, so a run can never block forever.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Literal

import structlog

logger = structlog.get_logger()

Decision = Literal["approved", "denied"]


@dataclass
class PendingApproval:
    """A tool call waiting for a decision."""

    call_id: str
    tool_name: str
    arguments: dict[str, Any]
    timeout: float
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    decision: Decision | None = None
    reason: str | None = None

    @property
    def deadline(self) -> datetime:
        return self.created_at + timedelta(seconds=self.timeout)

    @property
    def is_expired(self) -> bool:
        return datetime.now(timezone.utc) >= self.deadline

    @property
    def is_pending(self) -> bool:
        return self.decision is None

    def format_for_display(self) -> str:
        """Format this approval request for display to a human."""
        args_display = "\n".join(
            f"  {k}: {str(v)[:100]}" for k, v in self.arguments.items()
        )
        return (
            f"Approval required\n"
            f"Tool: {self.tool_name}\n"
            f"Call: {self.call_id}\n"
            f"Arguments:\n{args_display}\n"
            f"Expires at {self.deadline.isoformat()}"
        )


class ApprovalGate:
    """Tracks pending approvals for one run."""

    def __init__(self, timeout: float = 3600.0):
        self.timeout = timeout
        self._pending: dict[str, PendingApproval] = {}
        self._events: dict[str, asyncio.Event] = {}

    def request(self, call_id: str, tool_name: str, arguments: dict[str, Any]) -> PendingApproval:
        """Open an approval request for a tool call."""
        approval = PendingApproval(
            call_id=call_id,
            tool_name=tool_name,
            arguments=arguments,
            timeout=self.timeout,
        )
        self._pending[call_id] = approval
        self._events[call_id] = asyncio.Event()

        logger.info("Approval requested", call_id=call_id, tool=tool_name)
        return approval

    def approve(self, call_id: str) -> bool:
        """Approve a pending request."""
        return self._decide(call_id, "approved", "user")

    def deny(self, call_id: str, reason: str = "user") -> bool:
        """Deny a pending request."""
        return self._decide(call_id, "denied", reason)

    def _decide(self, call_id: str, decision: Decision, reason: str) -> bool:
        approval = self._pending.get(call_id)
        if approval is None or not approval.is_pending:
            logger.warning("No pending approval", call_id=call_id, decision=decision)
            return False

        approval.decision = decision
        approval.reason = reason
        self._events[call_id].set()

        logger.info("Approval decided", call_id=call_id, tool=approval.tool_name, decision=decision)
        return True

    async def wait(
        self,
        call_id: str,
        cancel_event: asyncio.Event | None = None,
    ) -> PendingApproval:
        """Wait until the request is decided, expires or the run is cancelled.

        Expiry and cancellation both resolve the request as denied.
        """
        approval = self._pending[call_id]
        event = self._events[call_id]

        if approval.is_pending:
            remaining = max(
                0.0,
                (approval.deadline - datetime.now(timezone.utc)).total_seconds(),
            )
            waiters = [asyncio.ensure_future(event.wait())]
            if cancel_event is not None:
                waiters.append(asyncio.ensure_future(cancel_event.wait()))
            try:
                await asyncio.wait(waiters, timeout=remaining, return_when=asyncio.FIRST_COMPLETED)
            finally:
                for waiter in waiters:
                    waiter.cancel()

        if approval.is_pending:
            if cancel_event is not None and cancel_event.is_set():
                self._decide(call_id, "denied", "cancelled")
            else:
                logger.info("Approval timed out", call_id=call_id, tool=approval.tool_name)
                self._decide(call_id, "denied", "timeout")

        return approval

    def get_pending(self, call_id: str) -> PendingApproval | None:
        """Get an approval by call id."""
        return self._pending.get(call_id)

    def list_pending(self) -> list[PendingApproval]:
        """List all undecided approvals."""
        return [a for a in self._pending.values() if a.is_pending]
