"""Call context carrying a request id, a deadline and a cancellation flag."""
from __future__ import annotations

import dataclasses
import time
from dataclasses import dataclass, field
from threading import Event
from typing import Optional

from tsgateway.errors import StatusCode, StatusError


@dataclass(frozen=True)
class RequestContext:
    """
    Immutable per-call context.

    Derived contexts share the parent's cancel event, so cancelling a root
    context is observed by every child. A child's deadline is never later than
    its parent's.
    """

    request_id: Optional[str] = None
    deadline: Optional[float] = None
    cancel_event: Event = field(default_factory=Event, compare=False, repr=False)

    @classmethod
    def background(cls) -> "RequestContext":
        return cls()

    def with_request_id(self, request_id: str) -> "RequestContext":
        return dataclasses.replace(self, request_id=request_id)

    def with_timeout(self, seconds: float) -> "RequestContext":
        deadline = time.monotonic() + seconds
        if self.deadline is not None:
            deadline = min(deadline, self.deadline)
        return dataclasses.replace(self, deadline=deadline)

    def remaining(self) -> Optional[float]:
        """Seconds until the deadline, or None when unbounded."""
        if self.deadline is None:
            return None
        return max(self.deadline - time.monotonic(), 0.0)

    def cancel(self):
        self.cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    @property
    def expired(self) -> bool:
        return self.deadline is not None and time.monotonic() >= self.deadline

    def check(self):
        """Raise a status error if the call was cancelled or ran out of time."""
        if self.cancelled:
            raise StatusError(StatusCode.CANCELLED, "context canceled")
        if self.expired:
            raise StatusError(StatusCode.DEADLINE_EXCEEDED, "context deadline exceeded")
