#!/usr/bin/env python
"""Escalate open issues whose SLA deadline has passed.

Meant for cron / a scheduler; the HTTP equivalent is POST /issues/sla/sweep.

Usage:
    python backend/scripts/sla_sweep.py                     # all companies
    python backend/scripts/sla_sweep.py --company-id 7      # one company
    python backend/scripts/sla_sweep.py --dry-run           # list overdue issues, change nothing
    python backend/scripts/sla_sweep.py --now 2024-01-02T00:00:00Z

Exit codes: 0 success, 2 bad arguments.
"""
from __future__ import annotations
import argparse, logging, os, sys

# Allow running from repo root
sys.path.append(os.path.abspath('backend'))

from facilityops import create_app, get_db  # type: ignore
from facilityops.services.audit import add_audit
from facilityops.services.directory import SYSTEM_USER_ID
from facilityops.services.engine import IssueEngine
from facilityops.utils.durations import to_utc, isoformat_z


def parse_args(argv=None):
    p = argparse.ArgumentParser(description='Escalate overdue open issues')
    p.add_argument('--company-id', type=int, help='Only sweep this company')
    p.add_argument('--dry-run', action='store_true', help='Only list overdue issues')
    p.add_argument('--now', help='Evaluate deadlines at this ISO-8601 instant instead of the current time')
    return p.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)
    logging.basicConfig(level=logging.INFO, format='%(asctime)s %(levelname)s %(name)s: %(message)s')
    now = None
    if args.now:
        now = to_utc(args.now)
        if now is None:
            print(f'[ERROR] --now is not an ISO-8601 timestamp: {args.now}', file=sys.stderr)
            return 2
    app = create_app()
    with app.app_context():
        session = get_db()
        engine = IssueEngine.from_config(session, app.config)
        if args.dry_run:
            overdue = engine.overdue_issues(now, args.company_id)
            for issue in overdue:
                print(f'[DRY-RUN] issue {issue.id} ({issue.status}, {issue.priority}) deadline {isoformat_z(issue.sla_deadline)}')
            print(f'[DRY-RUN] {len(overdue)} issue(s) would be escalated')
            return 0
        escalated = engine.escalate_overdue(now, args.company_id)
        for issue in escalated:
            add_audit('ISSUE.ESCALATE', 'Issue', issue.id, {'status': issue.status, 'source': 'sla_sweep'},
                      actor_user_id=SYSTEM_USER_ID)
        session.commit()
        print(f'[DONE] Escalated {len(escalated)} issue(s)')
    return 0


if __name__ == '__main__':  # pragma: no cover
    sys.exit(main())
