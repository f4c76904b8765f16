from __future__ import annotations
"""Paged list responses with ETag / Last-Modified validators.

List and single-resource GET endpoints share one conditional-request path: the ETag is
derived from what the client would see (ids, paging window, newest update time) and
If-None-Match takes precedence over If-Modified-Since.
"""
import hashlib
from datetime import datetime, timedelta
from email.utils import parsedate_to_datetime, format_datetime
from typing import Iterable, Optional, Tuple
from flask import request, make_response, jsonify
from sqlalchemy.orm import Query
from facilityops.config.pagination import normalize_pagination
from facilityops.utils.durations import to_utc, isoformat_z

TIMESTAMP_TOLERANCE = timedelta(seconds=1)


def canonicalize_timestamp(dt: datetime) -> datetime:
    """UTC tz-aware timestamp truncated to whole seconds."""
    return to_utc(dt).replace(microsecond=0)


def page_window() -> Tuple[int, int]:
    return normalize_pagination(request.args.get('limit'), request.args.get('offset'))


def apply_pagination(q: Query) -> Tuple[Query, int, int, int]:
    limit, offset = page_window()
    total = q.count()
    return q.offset(offset).limit(limit), total, limit, offset


def compute_etag(ids: Iterable, total: int, limit: int, offset: int, latest_iso: Optional[str] = '') -> str:
    seed = f"{list(ids)}|{total}|{limit}|{offset}|{latest_iso or ''}"
    return hashlib.sha256(seed.encode()).hexdigest()[:32]


def build_list_payload(rows: list, total: int, limit: int, offset: int):
    return {
        'data': rows,
        'pagination': {'total': total, 'limit': limit, 'offset': offset, 'returned': len(rows)},
    }


def _http_date(dt: datetime) -> str:
    return format_datetime(dt, usegmt=True)


def _set_validators(resp, etag: str, latest: Optional[datetime]):
    resp.headers['ETag'] = etag
    if latest:
        resp.headers['Last-Modified'] = _http_date(latest)
        resp.headers['X-Last-Modified-ISO'] = isoformat_z(latest)
    return resp


def _parse_if_modified_since(header_val: str) -> Optional[datetime]:
    if not header_val:
        return None
    parsed = to_utc(header_val)  # ISO 8601
    if parsed is not None:
        return parsed
    try:
        return to_utc(parsedate_to_datetime(header_val))  # RFC 1123
    except (TypeError, ValueError):
        return None


def handle_conditional(etag_value: str, latest_ts: Optional[datetime]):
    """Return a 304 response when the request's validators match, else None."""
    latest = canonicalize_timestamp(latest_ts) if latest_ts else None
    inm = request.headers.get('If-None-Match')
    if inm:
        if inm.strip('"') == etag_value:
            return _set_validators(make_response('', 304), etag_value, latest)
        return None
    ims = _parse_if_modified_since(request.headers.get('If-Modified-Since'))
    if ims and latest and latest <= canonicalize_timestamp(ims) + TIMESTAMP_TOLERANCE:
        return _set_validators(make_response('', 304), etag_value, latest)
    return None


def cached_list_response(rows: list, total: int, limit: int, offset: int, latest_ts: Optional[datetime] = None):
    """200 list payload or 304; bodies are dropped for HEAD."""
    latest = canonicalize_timestamp(latest_ts) if latest_ts else None
    etag = compute_etag([r.get('id') for r in rows], total, limit, offset, isoformat_z(latest))
    resp = handle_conditional(etag, latest) or _set_validators(
        make_response(build_list_payload(rows, total, limit, offset)), etag, latest
    )
    if request.method == 'HEAD':
        resp.set_data(b'')
    return resp


def cached_item_response(body: dict, latest_ts: Optional[datetime] = None):
    latest = canonicalize_timestamp(latest_ts) if latest_ts else None
    etag = compute_etag([body.get('id')], 1, 1, 0, f"{isoformat_z(latest) or ''}|{body.get('version', '')}")
    resp = handle_conditional(etag, latest) or _set_validators(make_response(jsonify(body)), etag, latest)
    if request.method == 'HEAD':
        resp.set_data(b'')
    return resp
