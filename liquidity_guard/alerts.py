"""
Alert Decisions — Range Transitions, Fee and IL Thresholds
===========================================================

Per monitored position and per cycle:

  Range state machine (previous → new):
    in-range     → out-of-range   out_of_range   (if enabled)   60 min
    out-of-range → in-range       back_in_range  (always)       30 min
    same state, or either unknown  nothing

  Independently, every cycle:
    fees_usd ≥ fee threshold (threshold > 0)     fees_threshold  180 min
    |IL %|   ≥ IL threshold  (IL known)          il_threshold    360 min

Each kind has its own cooldown key ``"{kind}_{record_id}"``, so several
kinds can fire in the same cycle.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional

from liquidity_guard.cooldown import CooldownService


class AlertKind(str, Enum):
    OUT_OF_RANGE = "out_of_range"
    BACK_IN_RANGE = "back_in_range"
    FEES_THRESHOLD = "fees_threshold"
    IL_THRESHOLD = "il_threshold"
    ERROR = "error"


COOLDOWN_MINUTES: Dict[AlertKind, int] = {
    AlertKind.OUT_OF_RANGE: 60,
    AlertKind.BACK_IN_RANGE: 30,
    AlertKind.FEES_THRESHOLD: 180,
    AlertKind.IL_THRESHOLD: 360,
}


class RangeStatus(Enum):
    IN_RANGE = "in_range"
    OUT_OF_RANGE = "out_of_range"
    UNKNOWN = "unknown"

    @classmethod
    def from_flag(cls, in_range: Optional[bool]) -> "RangeStatus":
        if in_range is None:
            return cls.UNKNOWN
        return cls.IN_RANGE if in_range else cls.OUT_OF_RANGE


def detect_transition(previous: RangeStatus, current: RangeStatus) -> Optional[AlertKind]:
    """
    Range-membership transition, if alertable.

    >>> detect_transition(RangeStatus.IN_RANGE, RangeStatus.OUT_OF_RANGE)
    <AlertKind.OUT_OF_RANGE: 'out_of_range'>
    >>> detect_transition(RangeStatus.UNKNOWN, RangeStatus.OUT_OF_RANGE) is None
    True
    """
    if previous is RangeStatus.IN_RANGE and current is RangeStatus.OUT_OF_RANGE:
        return AlertKind.OUT_OF_RANGE
    if previous is RangeStatus.OUT_OF_RANGE and current is RangeStatus.IN_RANGE:
        return AlertKind.BACK_IN_RANGE
    return None


def alert_key(kind: AlertKind, record_id) -> str:
    return f"{kind.value}_{record_id}"


@dataclass(frozen=True)
class AlertThresholds:
    """User-configured toggles and thresholds of one monitored position."""

    alert_out_of_range: bool = True
    fees_threshold_usd: float = 0.0
    il_threshold_pct: float = 5.0


class AlertDecider:
    """
    Decides which alerts to emit; owns no state beyond the injected cooldowns.

    Usage:
        decider = AlertDecider(CooldownService())
        kinds = decider.decide(7, True, False, fees_usd=12.0,
                               impermanent_loss=None, thresholds=AlertThresholds())
    """

    def __init__(self, cooldowns: CooldownService, cooldown_minutes: Optional[Dict[AlertKind, int]] = None):
        self.cooldowns = cooldowns
        self.cooldown_minutes = dict(COOLDOWN_MINUTES)
        if cooldown_minutes:
            self.cooldown_minutes.update(cooldown_minutes)

    def _acquire(self, kind: AlertKind, record_id) -> bool:
        return self.cooldowns.try_acquire(alert_key(kind, record_id), self.cooldown_minutes[kind])

    def candidates(
        self,
        previous_in_range: Optional[bool],
        in_range: Optional[bool],
        fees_usd: Optional[float],
        impermanent_loss: Optional[float],
        thresholds: AlertThresholds,
    ) -> List[AlertKind]:
        """Alert kinds whose condition holds, before cooldown gating."""
        kinds = []
        transition = detect_transition(
            RangeStatus.from_flag(previous_in_range), RangeStatus.from_flag(in_range)
        )
        if transition is AlertKind.OUT_OF_RANGE and thresholds.alert_out_of_range:
            kinds.append(transition)
        elif transition is AlertKind.BACK_IN_RANGE:
            kinds.append(transition)

        if (
            thresholds.fees_threshold_usd > 0
            and fees_usd is not None
            and fees_usd >= thresholds.fees_threshold_usd
        ):
            kinds.append(AlertKind.FEES_THRESHOLD)

        if (
            impermanent_loss is not None
            and thresholds.il_threshold_pct > 0
            and abs(impermanent_loss) >= thresholds.il_threshold_pct
        ):
            kinds.append(AlertKind.IL_THRESHOLD)
        return kinds

    def decide(
        self,
        record_id,
        previous_in_range: Optional[bool],
        in_range: Optional[bool],
        fees_usd: Optional[float],
        impermanent_loss: Optional[float],
        thresholds: AlertThresholds,
    ) -> List[AlertKind]:
        """Alert kinds to send now; each returned kind has already been marked."""
        return [
            kind
            for kind in self.candidates(previous_in_range, in_range, fees_usd, impermanent_loss, thresholds)
            if self._acquire(kind, record_id)
        ]
