from __future__ import annotations
from typing import Any, Dict
from flask import abort


def apply_filters(query, specs: Dict[str, Dict[str, Any]], params: Dict[str, Any]):
    """Generic query-string filter builder.

    specs: { param_name: { 'op': callable(query, value)->query, 'coerce': callable (optional),
             'choices': iterable of allowed values (optional) } }
    Missing or empty params are skipped; a value that fails coercion or is not one of
    the choices is a 400.
    """
    for name, meta in specs.items():
        val = params.get(name)
        if val is None or val == '':
            continue
        if 'coerce' in meta:
            try:
                val = meta['coerce'](val)
            except (TypeError, ValueError):
                abort(400, description=f'{name} invalid')
        choices = meta.get('choices')
        if choices is not None and val not in [getattr(c, 'value', c) for c in choices]:
            abort(400, description=f'{name} invalid')
        query = meta['op'](query, val)
    return query
