"""
Progressive Penalty Evaluator  (Escalation Ladder)
==================================================

Rungs, all scoped to the driver's current period
-------------------------------------------------
* **Warning**          -- ``count >= 3`` and no warning issued yet.
* **3-day suspension** -- ``count >= 5``.
* **7-day suspension** -- ``count >= 7`` *and* a 3-day suspension already
  exists in the period.
* **Ban**              -- ``count > 5`` *and* a 7-day suspension already
  exists in the period.

The enforcement rungs only ever authorise the *next* step: a driver who
jumps straight to 8 disputes still has to go through the 3-day suspension
first.  Nothing is authorised while a suspension or ban is still open.

The warning rung is independent of the enforcement rungs, so a single
evaluation may yield both a warning and a suspension.

Complexity: O(1) per evaluation.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .entities import LadderHistory
from .enums import ActionType


@dataclass(frozen=True)
class PenaltyDecision:
    warn: bool = False
    action_type: Optional[ActionType] = None
    suspension_days: Optional[int] = None

    @property
    def is_none(self) -> bool:
        return not self.warn and self.action_type is None

    @property
    def enforces(self) -> bool:
        return self.action_type is not None


NO_PENALTY = PenaltyDecision()


@dataclass(frozen=True)
class PenaltyLadder:
    warning_threshold: int = 3
    first_suspension_threshold: int = 5
    second_suspension_threshold: int = 7
    ban_threshold: int = 5
    first_suspension_days: int = 3
    second_suspension_days: int = 7

    @classmethod
    def from_settings(cls, settings) -> "PenaltyLadder":
        return cls(
            warning_threshold=settings.warning_threshold,
            first_suspension_threshold=settings.first_suspension_threshold,
            second_suspension_threshold=settings.second_suspension_threshold,
            ban_threshold=settings.ban_threshold,
            first_suspension_days=settings.first_suspension_days,
            second_suspension_days=settings.second_suspension_days,
        )


class PenaltyEvaluator:
    """Pure decision function; holds no state besides its ladder."""

    def __init__(self, ladder: PenaltyLadder | None = None):
        self.ladder = ladder or PenaltyLadder()

    def evaluate(
        self, dispute_count: int, warned: bool, history: LadderHistory
    ) -> PenaltyDecision:
        warn = dispute_count >= self.ladder.warning_threshold and not warned
        action_type, days = self._next_rung(dispute_count, history)
        if not warn and action_type is None:
            return NO_PENALTY
        return PenaltyDecision(warn=warn, action_type=action_type, suspension_days=days)

    def _next_rung(
        self, count: int, history: LadderHistory
    ) -> tuple[Optional[ActionType], Optional[int]]:
        ladder = self.ladder
        if history.has_open_sanction:
            return None, None

        if history.had_second_suspension:
            if count > ladder.ban_threshold:
                return ActionType.BAN, None
            return None, None

        if history.had_first_suspension:
            if count >= ladder.second_suspension_threshold:
                return ActionType.SUSPENSION, ladder.second_suspension_days
            return None, None

        if count >= ladder.first_suspension_threshold:
            return ActionType.SUSPENSION, ladder.first_suspension_days
        return None, None
