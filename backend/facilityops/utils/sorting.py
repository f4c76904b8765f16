from __future__ import annotations
from flask import abort


def apply_multi_sort(query, sort_expr: str | None, allowed: dict, tie_breaker, default=None):
    """Order a query by a comma-separated sort expression ('-field' = descending).

    allowed maps public field names to columns; the tie breaker is always appended so
    paging stays deterministic. default is the expression used when none is given.
    """
    sort_expr = sort_expr or default
    clauses = []
    for raw in (sort_expr or '').split(','):
        token = raw.strip()
        if not token:
            continue
        desc = token.startswith('-')
        key = token.lstrip('-')
        col = allowed.get(key)
        if col is None:
            abort(400, description=f'Invalid sort field {key}')
        # NULL averages (no samples yet) always sort last
        clauses.append(col.desc().nulls_last() if desc else col.asc().nulls_last())
    clauses.append(tie_breaker.asc())
    return query.order_by(*clauses)
