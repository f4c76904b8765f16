from __future__ import annotations
"""Small finite state machine utility for event-driven status lifecycles.

Each edge is keyed by the event that triggers it, so the same target status can be
reached through different events and the validator can report which events are legal.
Usage:
    from facilityops.utils.fsm import TransitionValidator
    FSM = TransitionValidator({
        'created': {'assign': 'assigned'},
        'assigned': {'assign': 'assigned', 'respond_accepted': 'in_progress'},
        'in_progress': {},
    })
    target = FSM.assert_can_transition(current_status, 'assign')

Raises InvalidTransition (HTTP 400) if the event is not legal from the current status.
"""
from typing import Dict, List, Mapping
from facilityops.errors import InvalidTransition


def _key(value) -> str:
    return str(getattr(value, 'value', value))


class TransitionValidator:
    def __init__(self, graph: Mapping[str, Mapping[str, str]], field_name: str = 'status'):
        self.graph = {_key(k): {_key(e): _key(t) for e, t in v.items()} for k, v in graph.items()}
        self.field_name = field_name
        unknown = {t for edges in self.graph.values() for t in edges.values()} - set(self.graph)
        if unknown:
            raise ValueError(f"{field_name} graph targets undeclared states: {sorted(unknown)}")

    def states(self) -> List[str]:
        return list(self.graph)

    def allowed_events(self, current: str) -> List[str]:
        return sorted(self.graph.get(_key(current), {}))

    def can_transition(self, current: str, event: str) -> bool:
        return _key(event) in self.graph.get(_key(current), {})

    def assert_can_transition(self, current: str, event: str) -> str:
        """Return the target status for event, or raise InvalidTransition."""
        edges = self.graph.get(_key(current), {})
        if _key(event) not in edges:
            raise InvalidTransition(
                _key(current), _key(event),
                f"Invalid {self.field_name} transition: {_key(event)} not allowed from {_key(current)}",
            )
        return edges[_key(event)]

    def edges(self):
        for source, events in self.graph.items():
            for event, target in events.items():
                yield source, event, target


__all__ = ['TransitionValidator']
