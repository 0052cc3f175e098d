"""
Canonical workflow types (``jobcost_kernel.domain.workflow``).

Responsibility
--------------
Pure value objects for small, fixed state machines.  A module declares its
lifecycle once as a ``Workflow`` value (states, transitions and the
requirements guarding each target) and a single dispatcher consumes it,
so status strings never drift between validation and orchestration code.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.

Invariants enforced
-------------------
* Transitions reference only states in ``Workflow.states``.
* ``initial_state`` is a member of ``states``.
* Terminal states have no outgoing transitions.
* At most one transition exists per (from_state, to_state) pair.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Guard:
    """A named requirement that must hold before a transition fires.

    Descriptive only; the owning module evaluates it.
    """
    name: str
    description: str


@dataclass(frozen=True)
class Transition:
    """A permitted (from_state, to_state) move."""
    from_state: str
    to_state: str
    action: str
    guards: tuple[Guard, ...] = ()


@dataclass(frozen=True)
class Workflow:
    """A state machine definition for a document lifecycle."""
    name: str
    description: str
    initial_state: str
    states: tuple[str, ...]
    transitions: tuple[Transition, ...]
    terminal_states: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        known = set(self.states)
        if self.initial_state not in known:
            raise ValueError(
                f"Workflow {self.name}: initial state {self.initial_state!r} "
                "is not a declared state"
            )
        seen: set[tuple[str, str]] = set()
        for t in self.transitions:
            if t.from_state not in known or t.to_state not in known:
                raise ValueError(
                    f"Workflow {self.name}: transition {t.action!r} references "
                    f"an undeclared state ({t.from_state} -> {t.to_state})"
                )
            if t.from_state in self.terminal_states:
                raise ValueError(
                    f"Workflow {self.name}: terminal state {t.from_state!r} "
                    "has an outgoing transition"
                )
            pair = (t.from_state, t.to_state)
            if pair in seen:
                raise ValueError(
                    f"Workflow {self.name}: duplicate transition {pair}"
                )
            seen.add(pair)

    def find(self, from_state: str, to_state: str) -> Transition | None:
        for t in self.transitions:
            if t.from_state == from_state and t.to_state == to_state:
                return t
        return None

    def targets_from(self, from_state: str) -> tuple[str, ...]:
        """States reachable in one step, in declaration order."""
        return tuple(
            t.to_state for t in self.transitions if t.from_state == from_state
        )

    def is_terminal(self, state: str) -> bool:
        return state in self.terminal_states
