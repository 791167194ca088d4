"""Pydantic schemas for reconciliation runs."""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field


class GapFailure(BaseModel):
    """A missing entitlement that could not be filled on this run."""

    transaction_id: str
    code: str
    reason: str
    retryable: bool = False


class ReconciliationReport(BaseModel):
    window_start: datetime
    window_end: datetime
    started_at: datetime
    finished_at: Optional[datetime] = None
    dry_run: bool = False
    user_external_id: Optional[str] = None
    tenant_id: Optional[str] = None

    examined: int = 0
    eligible: int = 0
    already_provisioned: int = 0
    gaps_found: int = 0
    created: int = 0
    raced: int = 0
    gaps: list[str] = Field(default_factory=list)
    failures: list[GapFailure] = Field(default_factory=list)

    @property
    def failed(self) -> int:
        return len(self.failures)

    def summary(self) -> dict[str, Any]:
        duration = None
        if self.finished_at is not None:
            duration = (self.finished_at - self.started_at).total_seconds()
        return {
            "window_start": self.window_start.isoformat(),
            "window_end": self.window_end.isoformat(),
            "dry_run": self.dry_run,
            "examined": self.examined,
            "eligible": self.eligible,
            "already_provisioned": self.already_provisioned,
            "gaps_found": self.gaps_found,
            "created": self.created,
            "raced": self.raced,
            "failed": self.failed,
            "duration_seconds": duration,
        }


class ReconcileRequest(BaseModel):
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    days: Optional[int] = Field(None, ge=1, le=365)
    user_external_id: Optional[str] = None
    tenant_id: Optional[str] = None
    dry_run: bool = False
