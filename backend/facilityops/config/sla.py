"""Priority -> SLA window table (minutes).

Defaults mirror the service levels the product has always promised: 4h for high,
24h for medium and 72h for low priority work. Override per deployment with the
SLA_WINDOW_<PRIORITY>_MINUTES environment variables or `SLA_WINDOWS` in app config.
"""
import os

DEFAULT_SLA_WINDOWS = {
    'high': 240,
    'medium': 1440,
    'low': 4320,
}


def sla_windows_from_env(environ=None):
    environ = os.environ if environ is None else environ
    windows = {}
    for priority, default in DEFAULT_SLA_WINDOWS.items():
        raw = environ.get(f'SLA_WINDOW_{priority.upper()}_MINUTES')
        windows[priority] = raw if raw is not None else default
    return windows


def normalize_sla_windows(windows):
    """Return a validated {priority: minutes} dict; raise ValueError on bad input.

    Every known priority must be present and map to a positive whole number of minutes.
    """
    if not isinstance(windows, dict):
        raise ValueError('SLA windows must be a mapping of priority -> minutes')
    out = {}
    for priority in DEFAULT_SLA_WINDOWS:
        if priority not in windows:
            raise ValueError(f'SLA window missing for priority {priority}')
        try:
            minutes = int(windows[priority])
        except (TypeError, ValueError):
            raise ValueError(f'SLA window for {priority} must be an integer')
        if minutes <= 0:
            raise ValueError(f'SLA window for {priority} must be positive')
        out[priority] = minutes
    return out
