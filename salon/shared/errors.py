"""Domain exceptions rendered by the application's exception handler"""

from typing import Optional


class DomainError(Exception):
    """Structured business rejection: HTTP status, machine-readable kind, operator message"""

    status_code = 409
    kind = "domain-error"

    def __init__(self, message: str, kind: Optional[str] = None, **extra):
        super().__init__(message)
        self.message = message
        if kind:
            self.kind = kind
        self.extra = extra

    def to_dict(self) -> dict:
        return {"error": self.kind, "message": self.message, **self.extra}


class SchedulingRejection(DomainError):
    """Hard scheduling violation; cannot be forced"""

    kind = "scheduling-rejected"


class ResourceConflictError(DomainError):
    """Shared resources exceeded; retry with skip_resource_check to force"""

    kind = "resource-conflict"

    def __init__(self, conflicts: list[dict]):
        names = ", ".join(c["resource_name"] for c in conflicts)
        super().__init__(f"Insufficient resources: {names}", conflicts=conflicts)


class StateTransitionError(DomainError):
    kind = "invalid-transition"


class CommitConflictError(DomainError):
    """The write collided with a concurrent booking at commit time"""

    kind = "commit-conflict"


class SettlementInvariantError(RuntimeError):
    """Settlement arithmetic produced an impossible result"""


class InvoicingError(Exception):
    """The invoicing provider rejected the request or did not answer in time"""
