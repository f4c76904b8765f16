"""Typed engine errors.

Each error is a werkzeug HTTPException so the application-wide handler renders it in the
standard `{"error": {"status", "title", "detail"}}` shape, while engine callers outside a
request (scripts, tests) can catch the concrete class. None of them is fatal: the caller
re-fetches, retries or surfaces the message.
"""
from __future__ import annotations
from typing import Optional
from werkzeug import exceptions as wz


class EngineError(wz.HTTPException):
    """Base class for every recoverable engine failure."""


class NotFound(EngineError, wz.NotFound):
    name = 'Not Found'


class Forbidden(EngineError, wz.Forbidden):
    name = 'Forbidden'


class InvalidTransition(EngineError, wz.BadRequest):
    name = 'Invalid Transition'

    def __init__(self, current: str, event: str, description: Optional[str] = None):
        self.current = current
        self.event = event
        super().__init__(description or f"Invalid status transition: cannot {event} from {current}")


class ValidationError(EngineError, wz.BadRequest):
    name = 'Validation Error'

    def __init__(self, description: str, field: Optional[str] = None):
        self.field = field
        super().__init__(description)


class Conflict(EngineError, wz.Conflict):
    name = 'Conflict'


__all__ = ['EngineError', 'NotFound', 'Forbidden', 'InvalidTransition', 'ValidationError', 'Conflict']
