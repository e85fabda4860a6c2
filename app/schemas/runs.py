from datetime import datetime
from typing import Dict, List, Optional
from pydantic import BaseModel, Field

from app.models.case import Outcome


class CaseOutcomeDetail(BaseModel):
    """Outcome of one case within a driver run"""
    case_id: str
    subject_id: Optional[str] = None
    action_kind: Optional[str] = None
    outcome: Outcome
    from_status: Optional[str] = None
    to_status: Optional[str] = None
    detail: Optional[str] = None


class RunSummary(BaseModel):
    """Result of one driver invocation"""
    driver: str
    run_id: str
    started_at: datetime
    finished_at: Optional[datetime] = None
    candidates: int = 0
    counts: Dict[str, int] = Field(default_factory=lambda: {o.value: 0 for o in Outcome})
    details: List[CaseOutcomeDetail] = []
    already_correct: int = 0
    message: Optional[str] = None

    def record(self, detail: CaseOutcomeDetail) -> None:
        self.details.append(detail)
        self.counts[detail.outcome.value] = self.counts.get(detail.outcome.value, 0) + 1

    def count(self, outcome: Outcome) -> int:
        return self.counts.get(outcome.value, 0)

    @property
    def processed(self) -> int:
        return len(self.details)
