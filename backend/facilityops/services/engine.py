from __future__ import annotations
"""IssueEngine: the outward interface of the issue lifecycle.

Every transition runs the same pipeline inside one database transaction:

    load issue (NotFound) -> resolve actor + authorise (Forbidden)
    -> graph check (InvalidTransition) -> plan + payload validation (ValidationError)
    -> expected_version / compare-and-swap (Conflict) -> vendor metric folds -> commit

Nothing is written unless every check passes; a failing fold rolls the issue write back
with it. Notifications go out only after the commit.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Union

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from facilityops.errors import Conflict, Forbidden, InvalidTransition, ValidationError
from facilityops.models.issue import Issue, IssueStatus, Priority, TaskType, ReporterSnapshot, OPEN_STATUSES
from facilityops.models.vendor_metrics import VendorMetrics, VendorMetricFold
from facilityops.services.directory import Actor, MembershipDirectory, system_actor
from facilityops.services.execution_metrics import (
    compute_execution_metrics, flag_negative_durations, verify_execution_metrics,
)
from facilityops.services.lifecycle import Event, plan_transition, respond_event
from facilityops.services.notifications import DatabaseNotificationSink, IssueNotice, NotificationSink
from facilityops.services.policy import authorize, authorize_create
from facilityops.services.sla import SlaPolicy, is_delayed, is_overdue
from facilityops.services.store import IssueStore
from facilityops.services.vendor_metrics import VendorMetricsAccumulator, DEFAULT_CAS_ATTEMPTS
from facilityops.utils.durations import utcnow, to_utc
from facilityops.utils.validation import validate_choice, require_text, require_int, optional_int

logger = logging.getLogger(__name__)

ActorRef = Union[int, Actor]


@dataclass
class TransitionOutcome:
    issue: Issue
    vendor_metrics: Optional[VendorMetrics] = None
    event: Optional[str] = None
    previous_status: Optional[str] = None


# Notification type and text per applied event
_NOTICES = {
    Event.ASSIGN: ('issue_assigned', 'You have been assigned issue #{id}: {title}'),
    Event.ACCEPT: ('issue_accepted', 'Issue #{id} was accepted by the contractor'),
    Event.REJECT: ('issue_rejected', 'Issue #{id} was rejected by the contractor'),
    Event.AWAIT_PARTS: ('issue_awaiting_parts', 'Issue #{id} is waiting for parts'),
    Event.RESUME: ('issue_resumed', 'Work on issue #{id} has resumed'),
    Event.COMPLETE: ('issue_completed', 'Issue #{id} was completed and awaits approval'),
    Event.APPROVE: ('issue_closed', 'Issue #{id} was approved and closed'),
    Event.ESCALATE: ('issue_escalated', 'Issue #{id} was escalated'),
    Event.START_WORK: ('issue_work_started', 'Work on escalated issue #{id} has started'),
}


class IssueEngine:
    def __init__(self, session, directory: Optional[MembershipDirectory] = None,
                 sla_policy: Optional[SlaPolicy] = None, notifier: Optional[NotificationSink] = None,
                 clock: Optional[Callable[[], datetime]] = None, metrics_attempts: int = DEFAULT_CAS_ATTEMPTS):
        self.session = session
        self.issues = IssueStore(session)
        self.directory = directory or MembershipDirectory(session)
        self.sla_policy = sla_policy or SlaPolicy.from_config()
        self.notifier = notifier or DatabaseNotificationSink(session)
        self.clock = clock or utcnow
        self.accumulator = VendorMetricsAccumulator(session, max_attempts=metrics_attempts)

    @classmethod
    def from_config(cls, session, config, **kwargs) -> 'IssueEngine':
        return cls(
            session,
            sla_policy=SlaPolicy.from_config(config),
            metrics_attempts=config.get('VENDOR_METRICS_CAS_ATTEMPTS', DEFAULT_CAS_ATTEMPTS),
            **kwargs,
        )

    # --- helpers ---

    def _now(self) -> datetime:
        return to_utc(self.clock())

    def _actor(self, ref: ActorRef, company_id: int) -> Actor:
        if isinstance(ref, Actor):
            return ref
        actor = self.directory.resolve(int(ref), company_id)
        if actor is None:
            raise Forbidden('Not a member of this company')
        return actor

    def _recipients(self, issue: Issue, event: Event, actor: Actor, previous_assignee: Optional[int]) -> tuple:
        reporter = issue.reporter.user_id if issue.reporter else None
        if event == Event.ASSIGN:
            # a replaced contractor hears about it too
            ids = [issue.assigned_to, previous_assignee]
        elif event == Event.APPROVE:
            ids = [issue.assigned_to]
        elif event == Event.ESCALATE:
            ids = [issue.assigned_to, reporter] + [a.user_id for a in self.directory.company_admins(issue.company_id)]
        else:
            ids = [reporter]
        out = []
        for uid in ids:
            if uid is not None and uid != actor.user_id and uid not in out:
                out.append(uid)
        return tuple(out)

    def _notify(self, issue: Issue, event: Event, actor: Actor, previous_assignee: Optional[int], note: Optional[str] = None):
        notice_type, template = _NOTICES[event]
        message = template.format(id=issue.id, title=issue.title)
        if note:
            message = f'{message}: {note}'
        self.notifier.safe_publish(IssueNotice(
            issue_id=issue.id,
            company_id=issue.company_id,
            type=notice_type,
            message=message,
            recipients=self._recipients(issue, event, actor, previous_assignee),
            priority=issue.priority,
        ))

    def _fold(self, issue: Issue, event: Event) -> Optional[VendorMetrics]:
        metrics = issue.metrics
        if event == Event.ACCEPT:
            dimension, sample = VendorMetricFold.DIMENSION_RESPONSE, metrics.response_minutes
        elif event == Event.COMPLETE:
            dimension, sample = VendorMetricFold.DIMENSION_COMPLETION, metrics.execution_minutes
        elif event == Event.APPROVE and is_delayed(issue):
            dimension, sample = VendorMetricFold.DIMENSION_DELAY, None
        else:
            return None
        return self.accumulator.fold(issue.company_id, issue.assigned_to, issue.id, dimension, sample)

    def _transition(self, actor_ref: ActorRef, issue_id: int, event: Event, payload: Dict[str, Any],
                    expected_version: Optional[int] = None,
                    precheck: Optional[Callable[[Issue], None]] = None, note: Optional[str] = None) -> TransitionOutcome:
        issue = self.issues.get(issue_id)
        actor = self._actor(actor_ref, issue.company_id)
        authorize(event, actor, issue)
        now = self._now()
        changes = plan_transition(issue, actor, event, payload, now, self.sla_policy)
        if precheck:
            precheck(issue)
        expected_version = optional_int(expected_version, 'expected_version')
        if expected_version is not None and expected_version != issue.version:
            raise Conflict(f'Issue version is {issue.version}, expected {expected_version}; re-fetch and retry')
        previous_status, previous_assignee = issue.status, issue.assigned_to
        try:
            self.issues.compare_and_swap(issue, changes)
            vendor_metrics = self._fold(issue, event)
            self.session.commit()
        except IntegrityError:
            self.session.rollback()
            logger.warning('Concurrent metric fold on issue %s (%s)', issue_id, event.value)
            raise Conflict('Issue was modified concurrently; re-fetch and retry')
        except Exception:
            self.session.rollback()
            raise
        logger.info('Issue %s: %s -> %s via %s by user %s', issue.id, previous_status, issue.status, event.value, actor.user_id)
        flag_negative_durations(issue.id, issue.metrics)
        self._notify(issue, event, actor, previous_assignee, note)
        return TransitionOutcome(issue, vendor_metrics, event.value, previous_status)

    # --- creation ---

    def create_issue(self, actor_id: ActorRef, company_id: int, facility_id: int, title: str,
                     description: Optional[str] = None, priority: Optional[str] = None,
                     suggested_priority: Optional[str] = None, task_type: str = TaskType.EQUIPMENT.value,
                     equipment_id: Optional[int] = None, contractor_id: Optional[int] = None) -> Issue:
        company_id = require_int(company_id, 'company_id')
        actor = self._actor(actor_id, company_id)
        facility_id = require_int(facility_id, 'facility_id')
        authorize_create(actor, company_id, facility_id)
        title = require_text(title, 'title')
        description = require_text(description, 'description')
        if suggested_priority is not None:
            suggested_priority = validate_choice(suggested_priority, list(Priority), 'suggested_priority')
        if priority is None:
            priority = suggested_priority or Priority.MEDIUM.value
        priority = validate_choice(priority, list(Priority), 'priority')
        task_type = validate_choice(task_type, list(TaskType), 'task_type')
        equipment_id = optional_int(equipment_id, 'equipment_id')
        if task_type == TaskType.EQUIPMENT.value and equipment_id is None:
            raise ValidationError('equipment_id required for equipment issues', field='equipment_id')
        if contractor_id is not None:
            # fail before anything is written when the immediate assignment cannot succeed
            contractor_id = require_int(contractor_id, 'contractor_id')
            if not actor.is_manager:
                raise Forbidden('Facility manager or company admin required')
            self._assert_assignable(company_id, contractor_id)
        now = self._now()
        issue = Issue(
            company_id=company_id,
            facility_id=facility_id,
            equipment_id=equipment_id,
            task_type=task_type,
            title=title,
            description=description,
            priority=priority,
            suggested_priority=suggested_priority,
            status=IssueStatus.CREATED.value,
            reported_by=ReporterSnapshot(
                user_id=actor.user_id, name=actor.name, role=actor.role,
                email=actor.email, phone=actor.phone, facility_id=facility_id,
            ).to_dict(),
            created_at=now,
            version=1,
        )
        issue.execution_metrics = compute_execution_metrics(issue.timestamps()).to_dict()
        self.session.add(issue)
        try:
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        logger.info('Issue %s created in company %s by user %s', issue.id, company_id, actor.user_id)
        if contractor_id is not None:
            return self.assign_issue(actor, issue.id, contractor_id).issue
        return issue

    # --- transitions ---

    def _assert_assignable(self, company_id: int, contractor_id: int):
        contractor = self.directory.resolve(contractor_id, company_id)
        if contractor is None or not contractor.is_contractor:
            raise ValidationError('contractor_id is not a contractor of this company', field='contractor_id')
        if not contractor.is_active:
            raise ValidationError('Contractor is suspended', field='contractor_id')

    def assign_issue(self, actor_id: ActorRef, issue_id: int, contractor_id: int,
                     expected_version: Optional[int] = None) -> TransitionOutcome:
        def precheck(issue):
            self._assert_assignable(issue.company_id, require_int(contractor_id, 'contractor_id'))
        return self._transition(actor_id, issue_id, Event.ASSIGN, {'contractor_id': contractor_id},
                                expected_version, precheck=precheck)

    def respond_to_issue(self, actor_id: ActorRef, issue_id: int, decision: str, reason: Optional[str] = None,
                         proposed_cost=None, proposal: Optional[str] = None, attachments=None,
                         expected_version: Optional[int] = None) -> TransitionOutcome:
        payload = {
            'decision': decision, 'reason': reason, 'proposed_cost': proposed_cost,
            'proposal': proposal, 'attachments': attachments,
        }
        return self._transition(actor_id, issue_id, respond_event(decision), payload, expected_version,
                                note=reason if respond_event(decision) == Event.REJECT else None)

    def set_awaiting_parts(self, actor_id: ActorRef, issue_id: int, note: Optional[str] = None,
                           expected_version: Optional[int] = None) -> TransitionOutcome:
        return self._transition(actor_id, issue_id, Event.AWAIT_PARTS, {}, expected_version, note=note)

    def resume_work(self, actor_id: ActorRef, issue_id: int, expected_version: Optional[int] = None) -> TransitionOutcome:
        return self._transition(actor_id, issue_id, Event.RESUME, {}, expected_version)

    def complete_issue(self, actor_id: ActorRef, issue_id: int, execution_report: str, final_cost,
                       work_performed: Optional[str] = None, parts_used=None, proof_documents=None,
                       attachments=None, expected_version: Optional[int] = None) -> TransitionOutcome:
        payload = {
            'execution_report': execution_report, 'final_cost': final_cost, 'work_performed': work_performed,
            'parts_used': parts_used, 'proof_documents': proof_documents, 'attachments': attachments,
        }
        return self._transition(actor_id, issue_id, Event.COMPLETE, payload, expected_version)

    def approve_issue(self, actor_id: ActorRef, issue_id: int, rating: Optional[int] = None,
                      feedback: Optional[str] = None, expected_version: Optional[int] = None) -> TransitionOutcome:
        return self._transition(actor_id, issue_id, Event.APPROVE, {'rating': rating, 'feedback': feedback}, expected_version)

    def escalate_issue(self, actor_id: ActorRef, issue_id: int, reason: Optional[str] = None,
                       expected_version: Optional[int] = None) -> TransitionOutcome:
        return self._transition(actor_id, issue_id, Event.ESCALATE, {}, expected_version, note=reason)

    def start_work(self, actor_id: ActorRef, issue_id: int, expected_version: Optional[int] = None) -> TransitionOutcome:
        return self._transition(actor_id, issue_id, Event.START_WORK, {}, expected_version)

    # --- sweeps / checks ---

    def overdue_issues(self, now: Optional[datetime] = None, company_id: Optional[int] = None) -> List[Issue]:
        now = to_utc(now) if now is not None else self._now()
        stmt = select(Issue).where(
            Issue.status.in_([s.value for s in OPEN_STATUSES]),
            Issue.sla_deadline.isnot(None),
        ).order_by(Issue.id.asc())
        if company_id is not None:
            stmt = stmt.where(Issue.company_id == company_id)
        return [i for i in self.session.execute(stmt).scalars().all() if is_overdue(i, now)]

    def escalate_overdue(self, now: Optional[datetime] = None, company_id: Optional[int] = None) -> List[Issue]:
        """Escalate every open issue whose SLA deadline has passed; returns the escalated issues.

        Runs as the system actor. An issue that moves on concurrently is skipped, not failed.
        """
        escalated = []
        for issue in self.overdue_issues(now, company_id):
            try:
                outcome = self._transition(system_actor(issue.company_id), issue.id, Event.ESCALATE, {},
                                           note='SLA deadline passed')
            except (Conflict, InvalidTransition) as e:
                logger.info('SLA sweep skipped issue %s: %s', issue.id, e.description)
                continue
            escalated.append(outcome.issue)
        if escalated:
            logger.info('SLA sweep escalated %d issue(s)', len(escalated))
        return escalated

    def verify_execution_metrics(self, issue_id: int):
        """(stored, recomputed, consistent) for one issue."""
        return verify_execution_metrics(self.issues.get(issue_id))


__all__ = ['IssueEngine', 'TransitionOutcome']
