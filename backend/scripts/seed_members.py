#!/usr/bin/env python
"""Idempotent seed script for company members, plus dev access tokens.

Usage:
    python backend/scripts/seed_members.py members.json             # upsert members from JSON
    python backend/scripts/seed_members.py members.json --dry-run   # run logic then rollback
    python backend/scripts/seed_members.py --show-members --company-id 1
    python backend/scripts/seed_members.py --token 5 --company-id 1 # print a JWT for user 5

members.json is a list of objects:
    {"company_id": 1, "user_id": 5, "role": "contractor", "name": "Acme HVAC",
     "email": "ops@acme.test", "phone": "+1 555 0100", "status": "active", "facility_ids": []}
"""
from __future__ import annotations
import argparse, json, os, sys
from sqlalchemy import select, text

# Allow running from repo root
sys.path.append(os.path.abspath('backend'))

from facilityops import create_app, get_db  # type: ignore
from facilityops.constants.permissions import permissions_for_role
from facilityops.models.membership import Base, CompanyMember


def ensure_members(session, rows):
    created = updated = 0
    for row in rows:
        role = row.get('role')
        if role not in CompanyMember.ALL_ROLES:
            print(f"[WARN] Skipping user {row.get('user_id')}: unknown role {role}")
            continue
        status = row.get('status', CompanyMember.STATUS_ACTIVE)
        if status not in CompanyMember.ALL_STATUSES:
            print(f"[WARN] Skipping user {row.get('user_id')}: unknown status {status}")
            continue
        member = session.execute(
            select(CompanyMember).where(CompanyMember.company_id == row['company_id'], CompanyMember.user_id == row['user_id'])
        ).scalar_one_or_none()
        if member is None:
            member = CompanyMember(company_id=row['company_id'], user_id=row['user_id'])
            session.add(member)
            created += 1
        else:
            updated += 1
        member.role = role
        member.status = status
        member.name = row.get('name') or f"user-{row['user_id']}"
        member.email = row.get('email')
        member.phone = row.get('phone')
        member.facility_ids = list(row.get('facility_ids') or [])
    return created, updated


def print_members(session, company_id):
    q = select(CompanyMember).order_by(CompanyMember.company_id, CompanyMember.user_id)
    if company_id is not None:
        q = q.where(CompanyMember.company_id == company_id)
    for m in session.execute(q).scalars().all():
        print(f"{m.company_id:>6} | {m.user_id:>6} | {m.role:<16} | {m.status:<9} | {m.name}")


def issue_token(session, user_id, company_id):
    from flask_jwt_extended import create_access_token
    member = session.execute(
        select(CompanyMember).where(CompanyMember.company_id == company_id, CompanyMember.user_id == user_id)
    ).scalar_one_or_none()
    if member is None:
        return None
    return create_access_token(
        identity=str(user_id),
        additional_claims={'perms': permissions_for_role(member.role), 'company_ids': [company_id]},
    )


def parse_args():
    p = argparse.ArgumentParser(description='Seed company members / mint dev tokens')
    p.add_argument('file', nargs='?', help='JSON list of members to upsert')
    p.add_argument('--dry-run', action='store_true', help='Rollback after operations (no commit)')
    p.add_argument('--show-members', action='store_true', help='Print members after seeding')
    p.add_argument('--company-id', type=int, help='Company filter for --show-members / --token')
    p.add_argument('--token', type=int, metavar='USER_ID', help='Print an access token for USER_ID in --company-id')
    return p.parse_args()


def main():
    args = parse_args()
    app = create_app()
    with app.app_context():
        session = get_db()
        try:
            session.execute(text('SELECT 1 FROM company_members LIMIT 1'))
        except Exception:
            # Auto-create schema for bootstrap; in real env prefer alembic upgrade
            session.rollback()
            from facilityops.models import issue, vendor_metrics, notification, audit  # noqa: F401
            Base.metadata.create_all(session.get_bind())
        session.commit()

        if args.file:
            with open(args.file) as fh:
                rows = json.load(fh)
            created, updated = ensure_members(session, rows)
            if args.dry_run:
                session.rollback()
                print(f"[DRY-RUN] (rolled back) Members would create: {created}, update: {updated}")
            else:
                session.commit()
                print(f"[DONE] Members created: {created}, updated: {updated}")
        if args.show_members:
            print_members(session, args.company_id)
        if args.token is not None:
            if args.company_id is None:
                print('[ERROR] --token requires --company-id', file=sys.stderr)
                return 2
            token = issue_token(session, args.token, args.company_id)
            if token is None:
                print(f'[ERROR] user {args.token} is not a member of company {args.company_id}', file=sys.stderr)
                return 2
            print(token)
    return 0


if __name__ == '__main__':  # pragma: no cover
    sys.exit(main())
