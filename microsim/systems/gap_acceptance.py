"""
Gap acceptance at uncontrolled / yield-controlled conflict points.

A waiting vehicle compares the time-to-arrival of the nearest conflicting
vehicle that has right of way against its critical gap. Three policies share
the same contract: deterministic, urgency-decayed (with an absolute floor)
and logit (random draw from the world's seeded RNG).

Right of way goes to the higher movement priority, then to the shorter turn
(right, straight, left), then to the earlier arrival at the intersection.
"""

import math
import random
from abc import ABC, abstractmethod
from typing import NamedTuple, Optional, Tuple

from microsim.domain.models import GapAcceptanceConfig, GapAcceptanceMode, TurnType


class GapAcceptancePolicy(ABC):
    def critical_gap(self, base: float, wait_time: float) -> float:
        return base

    @abstractmethod
    def accepts(self, gap: float, base: float, wait_time: float, rng: random.Random) -> bool:
        pass


class DeterministicPolicy(GapAcceptancePolicy):
    def accepts(self, gap: float, base: float, wait_time: float, rng: random.Random) -> bool:
        return gap > base


class UrgencyPolicy(GapAcceptancePolicy):
    """Critical gap shrinks with waiting time, ``t_base * exp(-decay * wait)``.

    The floor keeps a minimum safety margin; the plain formula would decay
    towards zero.
    """

    def __init__(self, decay: float, floor: float):
        self.decay = decay
        self.floor = floor

    def critical_gap(self, base: float, wait_time: float) -> float:
        return max(self.floor, base * math.exp(-self.decay * wait_time))

    def accepts(self, gap: float, base: float, wait_time: float, rng: random.Random) -> bool:
        return gap > self.critical_gap(base, wait_time)


class LogitPolicy(GapAcceptancePolicy):
    def __init__(self, beta: float):
        self.beta = beta

    def acceptance_probability(self, gap: float, critical: float) -> float:
        if math.isinf(gap):
            return 1.0
        z = self.beta * (gap - critical)
        # Split on sign so exp never overflows.
        if z >= 0:
            return 1.0 / (1.0 + math.exp(-z))
        e = math.exp(z)
        return e / (1.0 + e)

    def accepts(self, gap: float, base: float, wait_time: float, rng: random.Random) -> bool:
        # Always draw so the RNG sequence does not depend on the gap.
        draw = rng.random()
        if gap <= 0.0:
            return False
        return draw < self.acceptance_probability(gap, base)


def policy_from_config(cfg: GapAcceptanceConfig) -> GapAcceptancePolicy:
    if cfg.mode == GapAcceptanceMode.URGENCY:
        return UrgencyPolicy(cfg.urgency_decay, cfg.critical_gap_floor)
    if cfg.mode == GapAcceptanceMode.LOGIT:
        return LogitPolicy(cfg.logit_beta)
    return DeterministicPolicy()


# Conflict helpers

def time_to_arrival(distance: float, speed: float, min_safe_distance: float, min_speed: float) -> float:
    """Seconds until a conflicting vehicle reaches its stop line; 0 when already too close."""
    if distance < min_safe_distance:
        return 0.0
    return distance / max(speed, min_speed)


# Shorter turn paths clear a shared conflict point first.
_TURN_RANK = {TurnType.RIGHT: 0, TurnType.STRAIGHT: 1, TurnType.LEFT: 2}


class Claim(NamedTuple):
    """A vehicle's claim on a conflict point."""
    priority: int
    turn: TurnType
    order: Optional[int]
    vehicle_id: str

    def rank(self) -> Tuple[int, int, float, str]:
        order = self.order if self.order is not None else math.inf
        return -self.priority, _TURN_RANK[self.turn], order, self.vehicle_id


def has_right_of_way(theirs: Claim, mine: Claim) -> bool:
    """Higher movement priority wins, then the shorter turn, then first come, first served."""
    return theirs.rank() < mine.rank()
