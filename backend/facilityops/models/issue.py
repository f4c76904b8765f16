from __future__ import annotations
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Optional, Dict, Any, List
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import Integer, String, Text, JSON, DateTime, func
from .membership import Base


class IssueStatus(str, Enum):
    CREATED = 'created'
    ASSIGNED = 'assigned'
    IN_PROGRESS = 'in_progress'
    AWAITING_PARTS = 'awaiting_parts'
    ESCALATED = 'escalated'
    COMPLETED = 'completed'
    APPROVED = 'approved'
    CLOSED = 'closed'


# States from which an SLA breach can still escalate the issue
OPEN_STATUSES = (
    IssueStatus.CREATED,
    IssueStatus.ASSIGNED,
    IssueStatus.IN_PROGRESS,
    IssueStatus.AWAITING_PARTS,
)


class Priority(str, Enum):
    LOW = 'low'
    MEDIUM = 'medium'
    HIGH = 'high'


class TaskType(str, Enum):
    EQUIPMENT = 'equipment'
    GENERAL = 'general'


class Decision(str, Enum):
    ACCEPTED = 'accepted'
    REJECTED = 'rejected'


TIMESTAMP_FIELDS = (
    'created_at', 'assigned_at', 'responded_at', 'accepted_at',
    'completed_at', 'approved_at', 'closed_at', 'rejected_at',
)


@dataclass
class ReporterSnapshot:
    user_id: int
    name: str
    role: str
    email: Optional[str] = None
    phone: Optional[str] = None
    facility_id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]):
        if not data:
            return None
        return cls(**{k: data.get(k) for k in ('user_id', 'name', 'role', 'email', 'phone', 'facility_id')})


@dataclass
class ContractorResponse:
    contractor_id: int
    decision: str
    reason: Optional[str] = None
    proposed_cost: Optional[float] = None
    proposal: Optional[str] = None
    attachments: List[str] = field(default_factory=list)
    responded_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]):
        if not data:
            return None
        return cls(
            contractor_id=data.get('contractor_id'),
            decision=data.get('decision'),
            reason=data.get('reason'),
            proposed_cost=data.get('proposed_cost'),
            proposal=data.get('proposal'),
            attachments=list(data.get('attachments') or []),
            responded_at=data.get('responded_at'),
        )


@dataclass
class CompletionReport:
    contractor_id: int
    execution_report: str
    final_cost: float
    work_performed: Optional[str] = None
    parts_used: List[Any] = field(default_factory=list)
    proof_documents: List[str] = field(default_factory=list)
    attachments: List[str] = field(default_factory=list)
    completed_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]):
        if not data:
            return None
        return cls(
            contractor_id=data.get('contractor_id'),
            execution_report=data.get('execution_report'),
            final_cost=data.get('final_cost'),
            work_performed=data.get('work_performed'),
            parts_used=list(data.get('parts_used') or []),
            proof_documents=list(data.get('proof_documents') or []),
            attachments=list(data.get('attachments') or []),
            completed_at=data.get('completed_at'),
        )


@dataclass(frozen=True)
class ExecutionMetrics:
    response_minutes: Optional[int] = None
    execution_minutes: Optional[int] = None
    total_minutes: Optional[int] = None
    approval_minutes: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]):
        data = data or {}
        return cls(
            response_minutes=data.get('response_minutes'),
            execution_minutes=data.get('execution_minutes'),
            total_minutes=data.get('total_minutes'),
            approval_minutes=data.get('approval_minutes'),
        )

    def negative_fields(self) -> List[str]:
        """Names of durations below zero (clock skew or bad timestamps)."""
        return [k for k, v in asdict(self).items() if v is not None and v < 0]


class Issue(Base):
    __tablename__ = 'issues'
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    company_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    facility_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    equipment_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True, index=True)
    task_type: Mapped[str] = mapped_column(String(16), nullable=False, default=TaskType.EQUIPMENT.value)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    priority: Mapped[str] = mapped_column(String(16), nullable=False, default=Priority.MEDIUM.value, index=True)
    suggested_priority: Mapped[Optional[str]] = mapped_column(String(16))
    status: Mapped[str] = mapped_column(String(32), nullable=False, default=IssueStatus.CREATED.value, index=True)
    reported_by: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False)
    assigned_to: Mapped[Optional[int]] = mapped_column(Integer, nullable=True, index=True)

    created_at = mapped_column(DateTime(timezone=True), nullable=False)
    assigned_at = mapped_column(DateTime(timezone=True), nullable=True)
    responded_at = mapped_column(DateTime(timezone=True), nullable=True)
    accepted_at = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at = mapped_column(DateTime(timezone=True), nullable=True)
    approved_at = mapped_column(DateTime(timezone=True), nullable=True)
    closed_at = mapped_column(DateTime(timezone=True), nullable=True)
    rejected_at = mapped_column(DateTime(timezone=True), nullable=True)
    escalated_at = mapped_column(DateTime(timezone=True), nullable=True)
    sla_deadline = mapped_column(DateTime(timezone=True), nullable=True, index=True)

    contractor_response: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON, nullable=True)
    completion: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON, nullable=True)
    execution_metrics: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON, nullable=True)
    rating: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    feedback: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # bumped by every compare-and-swap write
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    updated_at = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    def timestamps(self) -> Dict[str, Any]:
        return {name: getattr(self, name) for name in TIMESTAMP_FIELDS}

    @property
    def reporter(self) -> Optional[ReporterSnapshot]:
        return ReporterSnapshot.from_dict(self.reported_by)

    @property
    def response(self) -> Optional[ContractorResponse]:
        return ContractorResponse.from_dict(self.contractor_response)

    @property
    def completion_report(self) -> Optional[CompletionReport]:
        return CompletionReport.from_dict(self.completion)

    @property
    def metrics(self) -> ExecutionMetrics:
        return ExecutionMetrics.from_dict(self.execution_metrics)

# Lifecycle: created -> assigned -> in_progress (<-> awaiting_parts) -> completed -> approved -> closed
# Rejection returns the issue to created; any open state may be escalated.


__all__ = [
    'Issue', 'IssueStatus', 'Priority', 'TaskType', 'Decision', 'OPEN_STATUSES', 'TIMESTAMP_FIELDS',
    'ReporterSnapshot', 'ContractorResponse', 'CompletionReport', 'ExecutionMetrics',
]
