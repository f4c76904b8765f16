from __future__ import annotations
"""Issue state machine.

`ISSUE_FSM` is the event graph; `plan_transition` validates an event payload against the
current issue and returns the column changes to write. Nothing here touches the database:
the engine authorises, plans, then writes the plan with a compare-and-swap.
"""
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Mapping

from facilityops.models.issue import (
    IssueStatus, Decision, ContractorResponse, CompletionReport,
)
from facilityops.services.execution_metrics import compute_execution_metrics
from facilityops.utils.durations import isoformat_z
from facilityops.utils.fsm import TransitionValidator
from facilityops.utils.validation import (
    validate_choice, require_text, require_int, optional_int, non_negative_amount, list_value,
)
from facilityops.errors import InvalidTransition, ValidationError


class Event(str, Enum):
    ASSIGN = 'assign'
    ACCEPT = 'accept'
    REJECT = 'reject'
    AWAIT_PARTS = 'await_parts'
    RESUME = 'resume'
    COMPLETE = 'complete'
    APPROVE = 'approve'
    CLOSE = 'close'
    ESCALATE = 'escalate'
    START_WORK = 'start_work'


S = IssueStatus

ISSUE_FSM = TransitionValidator({
    S.CREATED: {Event.ASSIGN: S.ASSIGNED, Event.ESCALATE: S.ESCALATED},
    S.ASSIGNED: {
        Event.ASSIGN: S.ASSIGNED,
        Event.ACCEPT: S.IN_PROGRESS,
        Event.REJECT: S.CREATED,
        Event.ESCALATE: S.ESCALATED,
    },
    S.IN_PROGRESS: {Event.AWAIT_PARTS: S.AWAITING_PARTS, Event.COMPLETE: S.COMPLETED, Event.ESCALATE: S.ESCALATED},
    S.AWAITING_PARTS: {Event.RESUME: S.IN_PROGRESS, Event.ESCALATE: S.ESCALATED},
    S.ESCALATED: {Event.START_WORK: S.IN_PROGRESS, Event.ASSIGN: S.ASSIGNED},
    S.COMPLETED: {Event.APPROVE: S.APPROVED},
    # approved is transient: the approve write lands on closed in the same step
    S.APPROVED: {Event.CLOSE: S.CLOSED},
    S.CLOSED: {},
})


def _plan_assign(issue, actor, payload, now, sla_policy) -> Dict[str, Any]:
    changes = {
        'assigned_to': require_int(payload.get('contractor_id'), 'contractor_id'),
        'assigned_at': now,
        # a new assignee has not responded yet; keeps assigned_at <= responded_at
        'responded_at': None,
        'accepted_at': None,
        'contractor_response': None,
    }
    if issue.sla_deadline is None:
        try:
            changes['sla_deadline'] = sla_policy.compute_deadline(now, issue.priority)
        except ValueError as e:
            raise ValidationError(str(e), field='priority')
    return changes


def _plan_respond(issue, actor, payload, now, sla_policy) -> Dict[str, Any]:
    decision = validate_choice(payload.get('decision'), list(Decision), 'decision')
    reason = payload.get('reason')
    if decision == Decision.REJECTED.value:
        reason = require_text(reason, 'reason')
    elif reason is not None and not isinstance(reason, str):
        raise ValidationError('reason must be a string', field='reason')
    response = ContractorResponse(
        contractor_id=actor.user_id,
        decision=decision,
        reason=reason,
        proposed_cost=non_negative_amount(payload.get('proposed_cost'), 'proposed_cost'),
        proposal=payload.get('proposal'),
        attachments=list_value(payload.get('attachments'), 'attachments'),
        responded_at=isoformat_z(now),
    )
    changes = {'responded_at': now, 'contractor_response': response.to_dict()}
    if decision == Decision.ACCEPTED.value:
        changes['accepted_at'] = now
    else:
        changes['rejected_at'] = now
        changes['assigned_to'] = None
    return changes


def _plan_status_only(issue, actor, payload, now, sla_policy) -> Dict[str, Any]:
    return {}


def _plan_complete(issue, actor, payload, now, sla_policy) -> Dict[str, Any]:
    report = CompletionReport(
        contractor_id=actor.user_id,
        execution_report=require_text(payload.get('execution_report'), 'execution_report'),
        final_cost=non_negative_amount(payload.get('final_cost'), 'final_cost', required=True),
        work_performed=payload.get('work_performed'),
        parts_used=list_value(payload.get('parts_used'), 'parts_used'),
        proof_documents=list_value(payload.get('proof_documents'), 'proof_documents'),
        attachments=list_value(payload.get('attachments'), 'attachments'),
        completed_at=isoformat_z(now),
    )
    return {'completed_at': now, 'completion': report.to_dict()}


def _plan_approve(issue, actor, payload, now, sla_policy) -> Dict[str, Any]:
    rating = optional_int(payload.get('rating'), 'rating')
    if rating is not None and not 1 <= rating <= 5:
        raise ValidationError('rating must be between 1 and 5', field='rating')
    feedback = payload.get('feedback')
    if feedback is not None and not isinstance(feedback, str):
        raise ValidationError('feedback must be a string', field='feedback')
    return {
        'status': ISSUE_FSM.assert_can_transition(S.APPROVED, Event.CLOSE),
        'approved_at': now,
        'closed_at': now,
        'rating': rating,
        'feedback': feedback,
    }


def _plan_escalate(issue, actor, payload, now, sla_policy) -> Dict[str, Any]:
    return {'escalated_at': now}


def _plan_start_work(issue, actor, payload, now, sla_policy) -> Dict[str, Any]:
    if issue.assigned_to is None:
        raise InvalidTransition(issue.status, Event.START_WORK.value, 'Cannot start work: no contractor assigned')
    return {}


PLANNERS: Mapping[str, Callable[..., Dict[str, Any]]] = {
    Event.ASSIGN.value: _plan_assign,
    Event.ACCEPT.value: _plan_respond,
    Event.REJECT.value: _plan_respond,
    Event.AWAIT_PARTS.value: _plan_status_only,
    Event.RESUME.value: _plan_status_only,
    Event.COMPLETE.value: _plan_complete,
    Event.APPROVE.value: _plan_approve,
    Event.ESCALATE.value: _plan_escalate,
    Event.START_WORK.value: _plan_start_work,
}


def respond_event(decision) -> Event:
    """Map a contractor decision onto its graph edge; unknown decisions validate later."""
    value = getattr(decision, 'value', decision)
    return Event.REJECT if value == Decision.REJECTED.value else Event.ACCEPT


def plan_transition(issue, actor, event, payload: Mapping[str, Any], now: datetime, sla_policy) -> Dict[str, Any]:
    """Return the full set of column changes for applying event to issue at `now`.

    Raises InvalidTransition when the event is not legal from the issue's status and
    ValidationError when the payload is unusable. Execution metrics are recomputed from
    the post-transition timestamps.
    """
    event = Event(event)
    target = ISSUE_FSM.assert_can_transition(issue.status, event)
    changes = {'status': target}
    changes.update(PLANNERS[event.value](issue, actor, payload or {}, now, sla_policy))
    timestamps = issue.timestamps()
    timestamps.update({k: v for k, v in changes.items() if k in timestamps})
    changes['execution_metrics'] = compute_execution_metrics(timestamps).to_dict()
    return changes


__all__ = ['Event', 'ISSUE_FSM', 'PLANNERS', 'plan_transition', 'respond_event']
