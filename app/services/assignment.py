"""
AssignmentResolver - picks at most one owner for a new lead from its matching rules.

Pure decision logic: no I/O, no session. The caller persists the returned
``RuleMutation`` in the same transaction as the lead insert.

Precedence is fixed by strategy, not by priority across strategies:
  1. SPECIFIC    - first rule (lowest priority value) wins, no bookkeeping
  2. ROUND_ROBIN - rule with the oldest last_assigned_at (never-assigned first)
  3. PERCENTAGE  - weighted draw r in [0, 100), first rule with cumulative >= r
"""
import random
from dataclasses import dataclass
from datetime import datetime, UTC
from typing import Any, Callable, Optional, Sequence

from app.models.assignment_rule import AssignmentType

NO_STRATEGY = "NONE"


@dataclass(frozen=True)
class RuleMutation:
    """Bookkeeping write for the rule that won a round-robin or percentage selection."""
    rule_id: int
    expected_version: int
    last_assigned_at: datetime
    increment: int = 1


@dataclass(frozen=True)
class AssignmentResult:
    assignee_id: Optional[int]
    strategy_used: str
    rule_mutation: Optional[RuleMutation] = None
    rule_id: Optional[int] = None

    @classmethod
    def none(cls) -> "AssignmentResult":
        return cls(assignee_id=None, strategy_used=NO_STRATEGY)

    @property
    def is_assigned(self) -> bool:
        return self.assignee_id is not None


def _uniform_draw() -> float:
    return random.random() * 100


def _type_of(rule: Any) -> str:
    value = rule.assignment_type
    return value.value if isinstance(value, AssignmentType) else str(value)


class AssignmentResolver:
    """Strategy selection over a candidate rule list.

    ``draw`` returns a float in [0, 100); inject a deterministic one in tests.
    """

    def __init__(self, draw: Callable[[], float] | None = None):
        self.draw = draw or _uniform_draw

    def resolve(self, rules: Sequence[Any], now: datetime | None = None) -> AssignmentResult:
        """Resolve the owner for one lead.

        ``rules`` are the enabled candidates for the lead's workspace/source,
        already ordered by ascending priority. Never raises on an empty or
        unmatched set; that outcome is ``NONE``.
        """
        now = now or datetime.now(UTC)

        specific = [r for r in rules if _type_of(r) == AssignmentType.SPECIFIC.value]
        round_robin = [r for r in rules if _type_of(r) == AssignmentType.ROUND_ROBIN.value]
        percentage = [r for r in rules if _type_of(r) == AssignmentType.PERCENTAGE.value]

        if specific:
            rule = specific[0]
            return AssignmentResult(
                assignee_id=rule.assignee_id,
                strategy_used=AssignmentType.SPECIFIC.value,
                rule_id=rule.id,
            )

        if round_robin:
            rule = self._least_recently_assigned(round_robin)
            return self._selected(rule, AssignmentType.ROUND_ROBIN, now)

        if percentage:
            rule = self._weighted_pick(percentage, self.draw())
            if rule is None:
                return AssignmentResult.none()
            return self._selected(rule, AssignmentType.PERCENTAGE, now)

        return AssignmentResult.none()

    @staticmethod
    def _least_recently_assigned(rules: Sequence[Any]) -> Any:
        # NULL sorts before any timestamp; equal keys keep input order.
        def key(indexed):
            index, rule = indexed
            assigned_at = rule.last_assigned_at
            if assigned_at is None:
                return (0, 0.0, index)
            if assigned_at.tzinfo is None:
                assigned_at = assigned_at.replace(tzinfo=UTC)
            return (1, assigned_at.timestamp(), index)

        return min(enumerate(rules), key=key)[1]

    @staticmethod
    def _weighted_pick(rules: Sequence[Any], r: float) -> Any | None:
        """First rule whose cumulative percentage reaches ``r``.

        If the percentages sum to less than ``r`` nothing is selected: an
        unassigned lead is the visible symptom of a misconfigured split.
        """
        cumulative = 0.0
        for rule in rules:
            cumulative += rule.percentage or 0
            if r <= cumulative:
                return rule
        return None

    @staticmethod
    def _selected(rule: Any, strategy: AssignmentType, now: datetime) -> AssignmentResult:
        return AssignmentResult(
            assignee_id=rule.assignee_id,
            strategy_used=strategy.value,
            rule_mutation=RuleMutation(
                rule_id=rule.id,
                expected_version=rule.version or 0,
                last_assigned_at=now,
            ),
            rule_id=rule.id,
        )
