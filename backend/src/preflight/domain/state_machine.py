"""Transition policies for node provisioning states.

Provisioning state changes are plain overwrites. A policy is consulted before
each overwrite and decides what happens to moves outside the documented table:
- PermissiveTransitions: allow, log a warning
- StrictTransitions: reject with InvalidTransitionError
"""

import logging
from abc import ABC, abstractmethod

from opentelemetry import metrics

from preflight.domain.states import ProvisioningState as State

logger = logging.getLogger(__name__)

meter = metrics.get_meter("preflight.state_machine")

state_transitions_total = meter.create_counter(
    name="preflight_state_transitions_total",
    description="Total provisioning state transitions",
    unit="1",
)


class InvalidTransitionError(Exception):
    """Raised when a strict policy rejects a state transition."""

    def __init__(self, entity_id: str, current_state: str | None, new_state: str):
        self.entity_id = entity_id
        self.current_state = current_state
        self.new_state = new_state
        super().__init__(
            f"Invalid transition: {entity_id} cannot move from "
            f"{current_state or 'absent'} to {new_state}"
        )


# None stands for "no record yet"
TRANSITIONS: dict[State | None, frozenset[State]] = {
    None: frozenset({State.NEW, State.CONFIGURED}),
    State.NEW: frozenset({State.CSR, State.SIGNED, State.CONFIGURED, State.ERROR}),
    State.CSR: frozenset({State.SIGNED, State.ERROR}),
    State.SIGNED: frozenset({State.CONFIGURED, State.ERROR}),
    State.ERROR: frozenset({State.NEW}),
    # CONFIGURED is terminal
    State.CONFIGURED: frozenset(),
}


def is_documented(current: State | None, new: State) -> bool:
    """Check whether (current -> new) is in the transition table."""
    return new in TRANSITIONS.get(current, frozenset())


class TransitionPolicy(ABC):
    """Hook consulted before a provisioning state is overwritten."""

    def check(self, entity_id: str, current: State | None, new: State) -> None:
        """Validate and record a transition.

        Raises:
            InvalidTransitionError: If the policy rejects the transition
        """
        documented = is_documented(current, new)
        if not documented:
            self._on_undocumented(entity_id, current, new)

        state_transitions_total.add(
            1,
            {
                "from_state": current.value if current else "absent",
                "to_state": new.value,
                "documented": documented,
            },
        )

    @abstractmethod
    def _on_undocumented(self, entity_id: str, current: State | None, new: State) -> None: ...


class PermissiveTransitions(TransitionPolicy):
    """Accept every overwrite. Undocumented moves are only logged."""

    def _on_undocumented(self, entity_id: str, current: State | None, new: State) -> None:
        logger.warning(
            "undocumented_transition_allowed",
            extra={
                "entity_id": entity_id,
                "from_state": current.value if current else "absent",
                "to_state": new.value,
            },
        )


class StrictTransitions(TransitionPolicy):
    """Reject every move outside the transition table."""

    def _on_undocumented(self, entity_id: str, current: State | None, new: State) -> None:
        logger.warning(
            "invalid_transition_attempted",
            extra={
                "entity_id": entity_id,
                "from_state": current.value if current else "absent",
                "to_state": new.value,
            },
        )
        raise InvalidTransitionError(entity_id, current.value if current else None, new.value)
