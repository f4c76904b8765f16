from __future__ import annotations
"""Audit logging decorator for state-changing issue endpoints.

Usage examples:

@audit_log('ISSUE.CREATE', entity='Issue', entity_id_key='id', meta_keys=['status', 'priority'])
def create_issue():
    ... return issue_dict(issue), 201

@audit_log('ISSUE.ASSIGN', entity='Issue', entity_id_key='id', entity_id_arg='issue_id',
           diff_keys=['status', 'assigned_to'], pre_fetch=lambda a, kw: snapshot(kw['issue_id']))
def assign(issue_id): ...

Parameters:
  action: required audit action code (e.g. ISSUE.APPROVE)
  entity: optional entity label (Issue, Notification)
  entity_id_key: key in the returned JSON object whose value becomes entity_id.
  entity_id_arg: path parameter used for entity_id when the payload has no entity_id_key.
  meta_keys: keys projected from the returned JSON into meta (shallow copy).
  meta_builder: callable (data, rv, args, kwargs) -> dict; overrides meta_keys.
  diff_keys + pre_fetch: record {'before', 'after'} for keys whose value changed.

Only successful views are audited: an exception raised by the view propagates untouched.
A failure inside the audit step itself is logged and never breaks the response.
"""
import logging
from functools import wraps
from typing import Any, Callable, Dict, Iterable, Optional

from facilityops.services.audit import add_audit
from facilityops import get_db

logger = logging.getLogger(__name__)


def _extract_payload(rv: Any):
    """Return the JSON-able dict of a view return value: dict, (dict, status) or (dict, status, headers)."""
    if isinstance(rv, tuple) and rv:
        return rv[0]
    return rv


def _diff(before: Dict[str, Any], after: Dict[str, Any], keys: Iterable[str]) -> Dict[str, Any]:
    changes = {}
    for k in keys:
        if k in before and k in after and before.get(k) != after.get(k):
            changes[k] = {'before': before.get(k), 'after': after.get(k)}
    return changes


def audit_log(
    action: str,
    *,
    entity: Optional[str] = None,
    entity_id_key: Optional[str] = None,
    entity_id_arg: Optional[str] = None,
    meta_keys: Optional[Iterable[str]] = None,
    meta_builder: Optional[Callable[[dict, Any, tuple, dict], dict]] = None,
    commit: bool = True,
    diff_keys: Optional[Iterable[str]] = None,
    pre_fetch: Optional[Callable[[tuple, dict], Dict[str, Any]]] = None,
):
    def outer(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            before_snapshot = None
            if diff_keys and pre_fetch:
                try:
                    before_snapshot = pre_fetch(args, kwargs)
                except Exception:
                    logger.debug('Audit pre-fetch failed for %s', action, exc_info=True)
            rv = fn(*args, **kwargs)
            try:
                data = _extract_payload(rv)
                if not isinstance(data, dict):
                    add_audit(action, entity, kwargs.get(entity_id_arg) if entity_id_arg else None, None)
                else:
                    entity_id = None
                    if entity_id_key and entity_id_key in data:
                        entity_id = data.get(entity_id_key)
                    elif entity_id_arg and entity_id_arg in kwargs:
                        entity_id = kwargs.get(entity_id_arg)
                    if meta_builder:
                        meta = meta_builder(data, rv, args, kwargs) or {}
                    else:
                        meta = {k: data.get(k) for k in (meta_keys or ()) if k in data}
                    if diff_keys and isinstance(before_snapshot, dict):
                        changes = _diff(before_snapshot, data, diff_keys)
                        if changes:
                            meta['changes'] = changes
                    add_audit(action, entity, entity_id, meta)
                if commit:
                    get_db().commit()
            except Exception:
                logger.exception('Audit write failed for %s', action)
                get_db().rollback()
            return rv
        return wrapper
    return outer
