"""
Claim State Machine

Owns the legal transition graph for damage claims. The lifecycle
service asks the machine before every write, and the same graph is used
to validate a claim's recorded history.
"""
from typing import Dict, Iterable, List, Set

from damage_claims.core.models import HistoryEntry
from damage_claims.core.states import ClaimStatus


class InvalidTransition(ValueError):
    """Raised when a requested status change is not an edge of the graph."""

    def __init__(self, current: ClaimStatus, target: ClaimStatus, valid: Iterable[ClaimStatus]):
        self.current = current
        self.target = target
        self.valid = sorted(s.value for s in valid)
        super().__init__(
            f"Invalid transition from {current.value} to {target.value}. "
            f"Valid transitions: {self.valid}"
        )


class ClaimStateMachine:
    """
    State machine for damage claim statuses.

    chef_accepted and chef_disputed have no outgoing edges here because
    they are never stored; accept and dispute are compound transitions
    straight from SUBMITTED to APPROVED or UNDER_REVIEW.
    """

    # from_status -> set of valid to_statuses
    TRANSITIONS: Dict[ClaimStatus, Set[ClaimStatus]] = {
        ClaimStatus.DRAFT: {ClaimStatus.SUBMITTED},
        ClaimStatus.SUBMITTED: {
            ClaimStatus.APPROVED,
            ClaimStatus.UNDER_REVIEW,
            ClaimStatus.EXPIRED,
        },
        ClaimStatus.UNDER_REVIEW: {
            ClaimStatus.APPROVED,
            ClaimStatus.PARTIALLY_APPROVED,
            ClaimStatus.REJECTED,
        },
        ClaimStatus.APPROVED: {ClaimStatus.CHARGE_PENDING, ClaimStatus.CHARGE_FAILED},
        ClaimStatus.PARTIALLY_APPROVED: {ClaimStatus.CHARGE_PENDING, ClaimStatus.CHARGE_FAILED},
        ClaimStatus.CHARGE_PENDING: {ClaimStatus.CHARGE_SUCCEEDED, ClaimStatus.CHARGE_FAILED},
        # Manual re-charge re-enters the capture algorithm
        ClaimStatus.CHARGE_FAILED: {ClaimStatus.CHARGE_PENDING, ClaimStatus.CHARGE_FAILED},
        # Partial refunds keep the claim in CHARGE_SUCCEEDED
        ClaimStatus.CHARGE_SUCCEEDED: {ClaimStatus.RESOLVED, ClaimStatus.CHARGE_SUCCEEDED},
        ClaimStatus.CHEF_ACCEPTED: set(),
        ClaimStatus.CHEF_DISPUTED: set(),
        ClaimStatus.REJECTED: set(),  # Terminal
        ClaimStatus.RESOLVED: set(),  # Terminal
        ClaimStatus.EXPIRED: set(),  # Terminal
    }

    INITIAL_STATUSES: Set[ClaimStatus] = {ClaimStatus.DRAFT, ClaimStatus.SUBMITTED}

    APPROVAL_STATUSES: Set[ClaimStatus] = {ClaimStatus.APPROVED, ClaimStatus.PARTIALLY_APPROVED}

    CHARGEABLE_STATUSES: Set[ClaimStatus] = {ClaimStatus.APPROVED, ClaimStatus.PARTIALLY_APPROVED}

    RECHARGEABLE_STATUSES: Set[ClaimStatus] = {ClaimStatus.CHARGE_FAILED}

    def get_valid_transitions(self, status: ClaimStatus) -> List[ClaimStatus]:
        """Get list of valid next statuses."""
        return sorted(self.TRANSITIONS.get(status, set()), key=lambda s: s.value)

    def can_transition(self, current: ClaimStatus, target: ClaimStatus) -> bool:
        """Check if a transition from current to target is valid."""
        return target in self.TRANSITIONS.get(current, set())

    def require(self, current: ClaimStatus, target: ClaimStatus) -> None:
        """
        Validate a transition.

        Raises:
            InvalidTransition: If target is not reachable from current
        """
        if not self.can_transition(current, target):
            raise InvalidTransition(current, target, self.TRANSITIONS.get(current, set()))

    def is_terminal(self, status: ClaimStatus) -> bool:
        return not self.TRANSITIONS.get(status)

    def validate_history(self, entries: List[HistoryEntry]) -> List[str]:
        """
        Check that recorded history entries form a valid walk of the graph.

        Args:
            entries: History entries in chronological order

        Returns:
            List of problems found (empty when the walk is valid)
        """
        problems: List[str] = []
        if not entries:
            return problems

        first = entries[0]
        if first.previous_status is not None or first.new_status not in self.INITIAL_STATUSES:
            problems.append(
                f"history must start with creation into draft or submitted, "
                f"got {first.previous_status} -> {first.new_status.value}"
            )

        for prev, entry in zip(entries, entries[1:]):
            if entry.previous_status != prev.new_status:
                problems.append(
                    f"entry {entry.id} starts from {entry.previous_status} "
                    f"but previous entry ended in {prev.new_status.value}"
                )
                continue
            if not self.can_transition(entry.previous_status, entry.new_status):
                problems.append(
                    f"illegal transition {entry.previous_status.value} -> {entry.new_status.value}"
                )
        return problems
