"""Central enum-like definitions to avoid typos in permission/service strings.
Extend cautiously; never rename codes silently. Create new ones and deprecate old via migration if needed.

Permission codes gate the HTTP endpoints (JWT `perms` claim). Whether an actor may drive a
particular issue is decided afterwards by the lifecycle policy from the company role.
"""
from __future__ import annotations
from typing import List, Dict

SERVICES = ['ISSUE', 'VENDOR', 'RPT', 'NOTIFY']

SERVICE_ACTIONS = {
    'ISSUE': ['READ', 'CREATE', 'ASSIGN', 'RESPOND', 'EXECUTE', 'APPROVE', 'ESCALATE'],
    'VENDOR': ['READ'],
    'RPT': ['READ'],
    'NOTIFY': ['READ'],
}


def build_all_permission_codes() -> List[str]:
    codes: List[str] = []
    for svc, actions in SERVICE_ACTIONS.items():
        for act in actions:
            codes.append(f"{svc}.{act}")
    return codes

ALL_PERMISSION_CODES = build_all_permission_codes()

# Company role -> permission codes placed in the access token
ROLE_PRESETS: Dict[str, List[str]] = {
    'company_admin': ['*'],
    'facility_manager': [
        'ISSUE.READ', 'ISSUE.CREATE', 'ISSUE.ASSIGN', 'ISSUE.APPROVE',
        'VENDOR.READ', 'RPT.READ', 'NOTIFY.READ',
    ],
    'contractor': ['ISSUE.READ', 'ISSUE.RESPOND', 'ISSUE.EXECUTE', 'NOTIFY.READ'],
}


def permissions_for_role(role: str) -> List[str]:
    codes = ROLE_PRESETS.get(role, [])
    if '*' in codes:
        return list(ALL_PERMISSION_CODES)
    return list(codes)
