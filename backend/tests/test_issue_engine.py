from datetime import timedelta
import pytest
from sqlalchemy import update, select
from facilityops.errors import Conflict, Forbidden, InvalidTransition, NotFound, ValidationError
from facilityops.models.issue import Issue
from facilityops.models.membership import CompanyMember
from facilityops.models.notification import Notification
from facilityops.models.vendor_metrics import VendorMetricFold
from facilityops.services.notifications import NotificationSink
from facilityops.services.store import IssueStore, VendorMetricsStore
from facilityops.utils.durations import to_utc
from tests.test_utils_seed import seed_company, ensure_member
from tests.test_lifecycle_helpers import T0, FakeClock, RecordingSink, make_engine, open_issue, drive_to


def _metrics(session, seed, contractor=None):
    return VendorMetricsStore(session).get(seed.company_id, contractor or seed.contractor)


def test_full_lifecycle_with_late_completion(session):
    seed = seed_company()
    clock = FakeClock()
    engine = make_engine(clock)
    issue = open_issue(engine, seed, priority='high')
    assert issue.status == 'created'
    assert issue.reporter.user_id == seed.manager
    assert issue.reporter.phone == '+1 555 0102'

    clock.at(minutes=10)
    out = engine.assign_issue(seed.manager, issue.id, seed.contractor)
    assert out.issue.status == 'assigned'
    assert to_utc(out.issue.sla_deadline) == T0 + timedelta(hours=2, minutes=10)

    clock.at(minutes=20)
    out = engine.respond_to_issue(seed.contractor, issue.id, 'accepted', proposed_cost=250)
    assert out.issue.status == 'in_progress'
    assert out.issue.metrics.response_minutes == 10
    assert out.issue.response.proposed_cost == 250.0
    assert (out.vendor_metrics.avg_response_minutes, out.vendor_metrics.response_count) == (10, 1)

    clock.at(hours=2, minutes=20)
    out = engine.complete_issue(seed.contractor, issue.id, 'Replaced compressor relay', 180.5,
                                parts_used=[{'name': 'relay', 'qty': 1}])
    assert out.issue.status == 'completed'
    assert out.issue.metrics.execution_minutes == 120
    assert out.issue.metrics.total_minutes == 140
    assert out.issue.completion_report.final_cost == 180.5
    assert (out.vendor_metrics.total_jobs, out.vendor_metrics.avg_completion_minutes) == (1, 120)

    clock.at(hours=2, minutes=30)
    out = engine.approve_issue(seed.manager, issue.id, rating=4, feedback='Quick fix')
    assert out.issue.status == 'closed'
    assert out.previous_status == 'completed'
    assert to_utc(out.issue.approved_at) == to_utc(out.issue.closed_at) == T0 + timedelta(hours=2, minutes=30)
    assert out.issue.rating == 4
    assert out.issue.metrics.approval_minutes == 10
    # finished 02:20 against a 02:10 deadline
    assert out.vendor_metrics.delayed_jobs_count == 1

    m = _metrics(session, seed)
    assert (m.avg_response_minutes, m.avg_completion_minutes, m.total_jobs, m.delayed_jobs_count) == (10, 120, 1, 1)
    stored, recomputed, consistent = engine.verify_execution_metrics(issue.id)
    assert consistent and stored == recomputed


def test_on_time_completion_does_not_count_a_delay(session):
    seed = seed_company()
    clock = FakeClock()
    engine = make_engine(clock)
    issue = open_issue(engine, seed, priority='medium')
    drive_to(engine, seed, issue.id, 'closed')
    assert _metrics(session, seed).delayed_jobs_count == 0
    assert session.execute(
        select(VendorMetricFold).where(VendorMetricFold.issue_id == issue.id, VendorMetricFold.dimension == 'delay')
    ).first() is None


def test_rejection_returns_issue_to_created_without_folding(session):
    seed = seed_company()
    engine = make_engine()
    issue = open_issue(engine, seed)
    engine.assign_issue(seed.manager, issue.id, seed.contractor)
    out = engine.respond_to_issue(seed.contractor, issue.id, 'rejected', reason='No parts in stock')
    assert out.issue.status == 'created'
    assert out.issue.assigned_to is None
    assert out.issue.rejected_at is not None
    assert out.issue.response.reason == 'No parts in stock'
    assert out.vendor_metrics is None
    assert _metrics(session, seed) is None


def test_rejection_requires_reason():
    seed = seed_company()
    engine = make_engine()
    issue = open_issue(engine, seed)
    engine.assign_issue(seed.manager, issue.id, seed.contractor)
    with pytest.raises(ValidationError) as exc:
        engine.respond_to_issue(seed.contractor, issue.id, 'rejected')
    assert exc.value.field == 'reason'
    assert engine.issues.get(issue.id).status == 'assigned'


def test_unknown_decision_is_a_validation_error():
    seed = seed_company()
    engine = make_engine()
    issue = open_issue(engine, seed)
    engine.assign_issue(seed.manager, issue.id, seed.contractor)
    with pytest.raises(ValidationError):
        engine.respond_to_issue(seed.contractor, issue.id, 'maybe')


def test_replayed_completion_is_rejected_and_not_refolded(session):
    seed = seed_company()
    engine = make_engine()
    issue = open_issue(engine, seed)
    drive_to(engine, seed, issue.id, 'completed')
    with pytest.raises(InvalidTransition) as exc:
        engine.complete_issue(seed.contractor, issue.id, 'Again', 10)
    assert exc.value.current == 'completed'
    assert _metrics(session, seed).total_jobs == 1


def test_reassignment_keeps_the_first_deadline():
    seed = seed_company()
    clock = FakeClock()
    engine = make_engine(clock)
    issue = open_issue(engine, seed, priority='high')
    clock.at(minutes=10)
    engine.assign_issue(seed.manager, issue.id, seed.contractor)
    clock.at(minutes=50)
    out = engine.assign_issue(seed.manager, issue.id, seed.contractor2)
    assert out.issue.assigned_to == seed.contractor2
    assert to_utc(out.issue.assigned_at) == T0 + timedelta(minutes=50)
    assert to_utc(out.issue.sla_deadline) == T0 + timedelta(hours=2, minutes=10)


def test_reassignment_after_rejection_keeps_deadline():
    seed = seed_company()
    clock = FakeClock()
    engine = make_engine(clock)
    issue = open_issue(engine, seed, priority='high')
    clock.at(minutes=5)
    engine.assign_issue(seed.manager, issue.id, seed.contractor)
    clock.at(minutes=15)
    engine.respond_to_issue(seed.contractor, issue.id, 'rejected', reason='Out of area')
    clock.at(minutes=30)
    out = engine.assign_issue(seed.manager, issue.id, seed.contractor2)
    assert out.issue.responded_at is None
    assert to_utc(out.issue.sla_deadline) == T0 + timedelta(hours=2, minutes=5)


def test_expected_version_mismatch_is_a_conflict():
    seed = seed_company()
    engine = make_engine()
    issue = open_issue(engine, seed)
    with pytest.raises(Conflict):
        engine.assign_issue(seed.manager, issue.id, seed.contractor, expected_version=issue.version + 5)
    out = engine.assign_issue(seed.manager, issue.id, seed.contractor, expected_version=issue.version)
    assert out.issue.version == 2


def test_version_increments_on_every_transition():
    seed = seed_company()
    engine = make_engine()
    issue = open_issue(engine, seed)
    assert issue.version == 1
    closed = drive_to(engine, seed, issue.id, 'closed')
    assert closed.version == 5


def test_store_cas_detects_stale_read(session):
    seed = seed_company()
    engine = make_engine()
    issue = open_issue(engine, seed)
    stale = engine.issues.get(issue.id)
    session.execute(
        update(Issue).where(Issue.id == issue.id).values(version=Issue.version + 1)
        .execution_options(synchronize_session=False)
    )
    with pytest.raises(Conflict):
        IssueStore(session).compare_and_swap(stale, {'title': 'lost write'})
    session.rollback()


def test_concurrent_writer_wins_and_nothing_is_folded(session, monkeypatch):
    seed = seed_company()
    engine = make_engine()
    issue = open_issue(engine, seed)
    engine.assign_issue(seed.manager, issue.id, seed.contractor)
    real_get = engine.issues.get

    def get_then_race(issue_id):
        loaded = real_get(issue_id)
        # another request commits between our read and our write
        session.execute(
            update(Issue).where(Issue.id == issue_id).values(version=Issue.version + 1)
            .execution_options(synchronize_session=False)
        )
        return loaded

    monkeypatch.setattr(engine.issues, 'get', get_then_race)
    with pytest.raises(Conflict):
        engine.respond_to_issue(seed.contractor, issue.id, 'accepted')
    monkeypatch.undo()
    assert engine.issues.get(issue.id).status == 'assigned'
    assert _metrics(session, seed) is None


def test_metrics_conflict_rolls_back_issue_write(session, monkeypatch):
    seed = seed_company()
    engine = make_engine()
    issue = open_issue(engine, seed)
    engine.assign_issue(seed.manager, issue.id, seed.contractor)
    monkeypatch.setattr(engine.accumulator.store, 'compare_and_swap', lambda metrics, values: False)
    with pytest.raises(Conflict):
        engine.respond_to_issue(seed.contractor, issue.id, 'accepted')
    reloaded = engine.issues.get(issue.id)
    assert reloaded.status == 'assigned'
    assert reloaded.accepted_at is None


def test_unknown_issue_is_not_found():
    seed = seed_company()
    with pytest.raises(NotFound):
        make_engine().assign_issue(seed.manager, 10 ** 9, seed.contractor)


def test_only_assigned_contractor_may_respond():
    seed = seed_company()
    engine = make_engine()
    issue = open_issue(engine, seed)
    engine.assign_issue(seed.manager, issue.id, seed.contractor)
    with pytest.raises(Forbidden):
        engine.respond_to_issue(seed.contractor2, issue.id, 'accepted')
    with pytest.raises(Forbidden):
        engine.respond_to_issue(seed.manager, issue.id, 'accepted')


def test_contractor_cannot_assign_or_approve():
    seed = seed_company()
    engine = make_engine()
    issue = open_issue(engine, seed)
    with pytest.raises(Forbidden):
        engine.assign_issue(seed.contractor, issue.id, seed.contractor)
    drive_to(engine, seed, issue.id, 'completed')
    with pytest.raises(Forbidden):
        engine.approve_issue(seed.contractor, issue.id, rating=5)


def test_forbidden_is_checked_before_the_graph():
    seed = seed_company()
    engine = make_engine()
    issue = open_issue(engine, seed)
    # created issue: approve is also an illegal edge, but authority fails first
    with pytest.raises(Forbidden):
        engine.approve_issue(seed.contractor, issue.id)


def test_user_from_another_company_is_forbidden():
    seed = seed_company()
    other = seed_company()
    engine = make_engine()
    issue = open_issue(engine, seed)
    with pytest.raises(Forbidden):
        engine.assign_issue(other.manager, issue.id, seed.contractor)
    with pytest.raises(ValidationError):
        engine.assign_issue(seed.manager, issue.id, other.contractor)


def test_suspended_contractor():
    seed = seed_company()
    engine = make_engine()
    issue = open_issue(engine, seed)
    engine.assign_issue(seed.manager, issue.id, seed.contractor)
    ensure_member(seed.company_id, seed.contractor, CompanyMember.ROLE_CONTRACTOR, 'Acme HVAC',
                  status=CompanyMember.STATUS_SUSPENDED)
    with pytest.raises(Forbidden):
        engine.respond_to_issue(seed.contractor, issue.id, 'accepted')
    other = open_issue(engine, seed)
    with pytest.raises(ValidationError) as exc:
        engine.assign_issue(seed.manager, other.id, seed.contractor)
    assert exc.value.field == 'contractor_id'


def test_assignee_must_be_a_contractor():
    seed = seed_company()
    engine = make_engine()
    issue = open_issue(engine, seed)
    with pytest.raises(ValidationError):
        engine.assign_issue(seed.manager, issue.id, seed.admin)


def test_facility_manager_scope():
    seed = seed_company(manager_facilities=[1])
    engine = make_engine()
    with pytest.raises(Forbidden):
        open_issue(engine, seed, facility_id=2)
    issue = engine.create_issue(seed.admin, seed.company_id, 2, 'Door jammed', 'Back door', equipment_id=7)
    with pytest.raises(Forbidden):
        engine.assign_issue(seed.manager, issue.id, seed.contractor)
    assert engine.assign_issue(seed.admin, issue.id, seed.contractor).issue.status == 'assigned'


def test_completion_validation():
    seed = seed_company()
    engine = make_engine()
    issue = open_issue(engine, seed)
    drive_to(engine, seed, issue.id, 'in_progress')
    with pytest.raises(ValidationError) as exc:
        engine.complete_issue(seed.contractor, issue.id, '', 100)
    assert exc.value.field == 'execution_report'
    with pytest.raises(ValidationError) as exc:
        engine.complete_issue(seed.contractor, issue.id, 'Done', -1)
    assert exc.value.field == 'final_cost'
    with pytest.raises(ValidationError):
        engine.complete_issue(seed.contractor, issue.id, 'Done', None)
    assert engine.issues.get(issue.id).status == 'in_progress'


def test_approval_rating_bounds():
    seed = seed_company()
    engine = make_engine()
    issue = open_issue(engine, seed)
    drive_to(engine, seed, issue.id, 'completed')
    with pytest.raises(ValidationError):
        engine.approve_issue(seed.manager, issue.id, rating=6)
    out = engine.approve_issue(seed.manager, issue.id)
    assert out.issue.status == 'closed'
    assert out.issue.rating is None


def test_costs_must_be_finite():
    seed = seed_company()
    engine = make_engine()
    issue = open_issue(engine, seed)
    engine.assign_issue(seed.manager, issue.id, seed.contractor)
    for bad in ('nan', 'inf', float('inf')):
        with pytest.raises(ValidationError) as exc:
            engine.respond_to_issue(seed.contractor, issue.id, 'accepted', proposed_cost=bad)
        assert exc.value.field == 'proposed_cost'
    engine.respond_to_issue(seed.contractor, issue.id, 'accepted', proposed_cost='120.50')
    for bad in ('nan', '-inf', float('nan')):
        with pytest.raises(ValidationError) as exc:
            engine.complete_issue(seed.contractor, issue.id, 'Done', bad)
        assert exc.value.field == 'final_cost'
    stored = engine.issues.get(issue.id)
    assert stored.status == 'in_progress'
    assert stored.completion is None


def test_approval_rating_must_be_a_whole_number():
    seed = seed_company()
    engine = make_engine()
    issue = open_issue(engine, seed)
    drive_to(engine, seed, issue.id, 'completed')
    with pytest.raises(ValidationError) as exc:
        engine.approve_issue(seed.manager, issue.id, rating=4.7)
    assert exc.value.field == 'rating'
    assert engine.approve_issue(seed.manager, issue.id, rating=4.0).issue.rating == 4


def test_non_numeric_expected_version_is_a_validation_error():
    seed = seed_company()
    engine = make_engine()
    issue = open_issue(engine, seed)
    with pytest.raises(ValidationError) as exc:
        engine.assign_issue(seed.manager, issue.id, seed.contractor, expected_version='abc')
    assert exc.value.field == 'expected_version'
    assert engine.issues.get(issue.id).version == 1


def test_awaiting_parts_round_trip():
    seed = seed_company()
    sink = RecordingSink()
    engine = make_engine(notifier=sink)
    issue = open_issue(engine, seed)
    drive_to(engine, seed, issue.id, 'in_progress')
    out = engine.set_awaiting_parts(seed.contractor, issue.id, note='Compressor on back order')
    assert out.issue.status == 'awaiting_parts'
    assert sink.notices[-1].type == 'issue_awaiting_parts'
    assert 'Compressor on back order' in sink.notices[-1].message
    assert sink.notices[-1].recipients == (seed.manager,)
    with pytest.raises(InvalidTransition):
        engine.complete_issue(seed.contractor, issue.id, 'Done', 10)
    assert engine.resume_work(seed.contractor, issue.id).issue.status == 'in_progress'


def test_escalation_requires_admin_and_start_work():
    seed = seed_company()
    engine = make_engine()
    issue = open_issue(engine, seed)
    engine.assign_issue(seed.manager, issue.id, seed.contractor)
    with pytest.raises(Forbidden):
        engine.escalate_issue(seed.manager, issue.id)
    out = engine.escalate_issue(seed.admin, issue.id, reason='Tenant complaint')
    assert out.issue.status == 'escalated'
    assert out.issue.escalated_at is not None
    with pytest.raises(InvalidTransition):
        engine.escalate_issue(seed.admin, issue.id)
    with pytest.raises(Forbidden):
        engine.start_work(seed.contractor2, issue.id)
    assert engine.start_work(seed.contractor, issue.id).issue.status == 'in_progress'


def test_start_work_needs_an_assignee():
    seed = seed_company()
    engine = make_engine()
    issue = open_issue(engine, seed)
    engine.escalate_issue(seed.admin, issue.id)
    with pytest.raises(InvalidTransition):
        engine.start_work(seed.admin, issue.id)
    out = engine.assign_issue(seed.manager, issue.id, seed.contractor2)
    assert out.issue.status == 'assigned'


def test_reassignment_from_escalation_drops_previous_response():
    seed = seed_company()
    engine = make_engine()
    issue = open_issue(engine, seed)
    drive_to(engine, seed, issue.id, 'in_progress')
    engine.escalate_issue(seed.admin, issue.id)
    out = engine.assign_issue(seed.manager, issue.id, seed.contractor2)
    assert out.issue.status == 'assigned'
    assert out.issue.contractor_response is None
    assert out.issue.responded_at is None
    assert out.issue.accepted_at is None


def test_sla_sweep_escalates_only_overdue_open_issues():
    seed = seed_company()
    clock = FakeClock()
    engine = make_engine(clock)
    late = open_issue(engine, seed, priority='high')
    relaxed = open_issue(engine, seed, priority='low')
    unassigned = open_issue(engine, seed, priority='high')
    engine.assign_issue(seed.manager, late.id, seed.contractor)
    engine.assign_issue(seed.manager, relaxed.id, seed.contractor2)

    clock.at(hours=1)
    assert engine.escalate_overdue(company_id=seed.company_id) == []

    clock.at(hours=3)
    assert [i.id for i in engine.overdue_issues(company_id=seed.company_id)] == [late.id]
    escalated = engine.escalate_overdue(company_id=seed.company_id)
    assert [i.id for i in escalated] == [late.id]
    assert engine.issues.get(late.id).status == 'escalated'
    assert engine.issues.get(relaxed.id).status == 'assigned'
    assert engine.issues.get(unassigned.id).status == 'created'
    # second run finds nothing left to do
    assert engine.escalate_overdue(company_id=seed.company_id) == []


def test_create_issue_validation():
    seed = seed_company()
    engine = make_engine()
    with pytest.raises(ValidationError) as exc:
        open_issue(engine, seed, description='  ')
    assert exc.value.field == 'description'
    with pytest.raises(ValidationError) as exc:
        open_issue(engine, seed, equipment_id=None)
    assert exc.value.field == 'equipment_id'
    with pytest.raises(ValidationError):
        open_issue(engine, seed, priority='urgent')
    general = open_issue(engine, seed, task_type='general', equipment_id=None)
    assert general.task_type == 'general'


def test_create_issue_uses_suggested_priority_as_default():
    seed = seed_company()
    engine = make_engine()
    issue = open_issue(engine, seed, priority=None, suggested_priority='low')
    assert issue.priority == 'low'
    assert issue.suggested_priority == 'low'
    assert open_issue(engine, seed, priority=None).priority == 'medium'


def test_create_with_contractor_assigns_immediately(session):
    seed = seed_company()
    engine = make_engine()
    issue = open_issue(engine, seed, contractor_id=seed.contractor)
    assert issue.status == 'assigned'
    assert issue.sla_deadline is not None
    count = session.query(Issue).filter(Issue.company_id == seed.company_id).count()
    with pytest.raises(ValidationError):
        open_issue(engine, seed, contractor_id=seed.manager)
    # nothing half-created when the assignment cannot succeed
    assert session.query(Issue).filter(Issue.company_id == seed.company_id).count() == count


def test_cannot_create_issue_in_another_company():
    seed = seed_company()
    other = seed_company()
    with pytest.raises(Forbidden):
        make_engine().create_issue(other.manager, seed.company_id, 1, 'Leak', 'Roof leak', equipment_id=3)


def test_notifications_are_persisted_for_recipients(session):
    seed = seed_company()
    engine = make_engine()
    issue = open_issue(engine, seed)
    engine.assign_issue(seed.manager, issue.id, seed.contractor)
    engine.respond_to_issue(seed.contractor, issue.id, 'accepted')
    rows = session.query(Notification).filter(Notification.issue_id == issue.id).order_by(Notification.id).all()
    assert [(n.user_id, n.type) for n in rows] == [
        (seed.contractor, 'issue_assigned'),
        (seed.manager, 'issue_accepted'),
    ]
    assert rows[0].priority == 'high'


def test_escalation_notifies_assignee_reporter_and_admins():
    seed = seed_company()
    sink = RecordingSink()
    engine = make_engine(notifier=sink)
    issue = open_issue(engine, seed)
    engine.assign_issue(seed.manager, issue.id, seed.contractor)
    engine.escalate_overdue(now=T0 + timedelta(days=1), company_id=seed.company_id)
    notice = sink.notices[-1]
    assert notice.type == 'issue_escalated'
    assert notice.recipients == (seed.contractor, seed.manager, seed.admin)


def test_reassignment_notifies_previous_contractor():
    seed = seed_company()
    sink = RecordingSink()
    engine = make_engine(notifier=sink)
    issue = open_issue(engine, seed)
    engine.assign_issue(seed.manager, issue.id, seed.contractor)
    engine.assign_issue(seed.manager, issue.id, seed.contractor2)
    assert sink.notices[-1].recipients == (seed.contractor2, seed.contractor)


def test_failing_notifier_does_not_undo_transition(caplog):
    class Broken(NotificationSink):
        def publish(self, notice):
            raise RuntimeError('smtp down')

    seed = seed_company()
    engine = make_engine(notifier=Broken())
    issue = open_issue(engine, seed)
    out = engine.assign_issue(seed.manager, issue.id, seed.contractor)
    assert out.issue.status == 'assigned'
    assert engine.issues.get(issue.id).status == 'assigned'
    assert 'Notification delivery failed' in caplog.text
