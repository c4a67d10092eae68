"""Declarative state machine shared by the approval workflows."""

from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional, Tuple

from app.core.exceptions import InvalidPayloadError, InvalidTransitionError, PermissionDeniedError
from app.core.security import Role


@dataclass(frozen=True)
class Transition:
    action: str
    sources: FrozenSet[str]
    target: str
    roles: FrozenSet[Role]
    required_fields: Tuple[str, ...] = field(default_factory=tuple)


def transition(
    action: str,
    sources: Iterable[str],
    target: str,
    roles: Iterable[Role],
    required: Iterable[str] = (),
) -> Transition:
    return Transition(action, frozenset(sources), target, frozenset(roles), tuple(required))


class StateMachine:
    """
    Transition table for one entity.

    ``resolve`` checks, in order: terminal state, action allowed from the
    current state, role, required review fields. Every failure raises.
    """

    def __init__(self, entity: str, transitions: Iterable[Transition], terminal_states: Iterable[str]):
        self.entity = entity
        self.transitions: Dict[str, Transition] = {t.action: t for t in transitions}
        self.terminal_states = frozenset(terminal_states)

    def is_terminal(self, state: str) -> bool:
        return state in self.terminal_states

    def allowed_actions(self, current: str, role: Optional[Role] = None) -> List[str]:
        if self.is_terminal(current):
            return []
        return [
            t.action
            for t in self.transitions.values()
            if current in t.sources and (role is None or role in t.roles)
        ]

    def resolve(
        self,
        action: str,
        current: str,
        role: Role,
        fields: Optional[Mapping[str, Any]] = None,
    ) -> Transition:
        if self.is_terminal(current):
            raise InvalidTransitionError(
                f"{self.entity} is {current}; no further transitions are allowed",
                {"entity": self.entity, "status": current, "action": action},
            )

        t = self.transitions.get(action)
        if t is None or current not in t.sources:
            raise InvalidTransitionError(
                f"Cannot {action} a {self.entity} in status {current}",
                {"entity": self.entity, "status": current, "action": action},
            )

        if role not in t.roles:
            raise PermissionDeniedError(
                f"Role {getattr(role, 'value', role)} cannot {action} a {self.entity}",
                {"allowed_roles": sorted(r.value for r in t.roles)},
            )

        fields = fields or {}
        missing = [
            name
            for name in t.required_fields
            if fields.get(name) is None or (isinstance(fields.get(name), str) and not fields[name].strip())
        ]
        if missing:
            raise InvalidPayloadError(
                f"{', '.join(missing)} required to {action} a {self.entity}",
                {"missing": missing},
            )
        return t
