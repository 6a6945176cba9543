"""
MOBIL lane-change evaluation.

A vehicle considering an adjacent lane is compared against four IDM
evaluations (self, new follower, old follower before/after). The safety gate
on the new follower is checked before the incentive and can never be
outweighed by it.
"""

import math
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional, Tuple

from microsim.domain.models import Vehicle
from microsim.systems.kinematics import context, following_acceleration, gap_between, idm_acceleration


class LaneChangeVerdict(str, Enum):
    APPROVED = "APPROVED"
    OCCUPIED = "OCCUPIED"
    UNSAFE = "UNSAFE"
    NO_INCENTIVE = "NO_INCENTIVE"


@dataclass(frozen=True)
class LaneNeighbours:
    """Start-of-tick surroundings of a vehicle in one lane.

    ``obstacle`` is the rear of whatever is followed when there is no in-lane
    ``leader`` (a vehicle past the lane end, a stop line), expressed in this
    lane's coordinate and possibly beyond its length.
    """

    leader: Optional[Vehicle] = None
    follower: Optional[Vehicle] = None
    obstacle: Optional[float] = None
    obstacle_velocity: float = 0.0

    def ahead_of(self, position: float) -> Tuple[float, float]:
        """(gap, velocity) of what a vehicle at ``position`` follows in this lane."""
        candidates = [(math.inf, 0.0)]
        if self.leader is not None:
            candidates.append((self.leader.rear - position, self.leader.velocity))
        if self.obstacle is not None:
            candidates.append((self.obstacle - position, self.obstacle_velocity))
        return min(candidates)


@dataclass(frozen=True)
class LaneChangeDecision:
    vehicle_id: str
    target_lane: str
    verdict: LaneChangeVerdict
    incentive: float = 0.0
    new_follower_acceleration: float = 0.0

    @property
    def approved(self) -> bool:
        return self.verdict == LaneChangeVerdict.APPROVED


def _following(vehicle: Vehicle, neighbours: LaneNeighbours, limit: Optional[float]) -> float:
    gap, leader_velocity = neighbours.ahead_of(vehicle.position)
    return idm_acceleration(context(vehicle.driver, vehicle.velocity, gap, leader_velocity, limit))


def evaluate_lane_change(vehicle: Vehicle, target_lane: str, current: LaneNeighbours, target: LaneNeighbours,
                         current_limit: Optional[float] = None,
                         target_limit: Optional[float] = None) -> LaneChangeDecision:
    """Decide whether ``vehicle`` should move into ``target_lane`` now.

    ``current`` and ``target`` hold the start-of-tick leader/follower in the
    vehicle's own lane and in the target lane, with ``current.leader`` being
    ``vehicle``'s own leader. Nothing is mutated.
    """
    # The vehicle must physically fit between the target-lane neighbours.
    if target.leader is not None and gap_between(vehicle, target.leader) <= 0.0:
        return LaneChangeDecision(vehicle.id, target_lane, LaneChangeVerdict.OCCUPIED)
    if target.follower is not None and gap_between(target.follower, vehicle) <= 0.0:
        return LaneChangeDecision(vehicle.id, target_lane, LaneChangeVerdict.OCCUPIED)

    new_behind = 0.0
    new_behind_after = 0.0
    if target.follower is not None:
        follower = target.follower
        new_behind = _following(follower, target, target_limit)
        new_behind_after = following_acceleration(follower, vehicle, target_limit)
        if new_behind_after < -follower.driver.safe_braking:
            return LaneChangeDecision(vehicle.id, target_lane, LaneChangeVerdict.UNSAFE,
                                      new_follower_acceleration=new_behind_after)

    own = _following(vehicle, current, current_limit)
    own_after = _following(vehicle, target, target_limit)

    old_behind = 0.0
    old_behind_after = 0.0
    if current.follower is not None:
        follower = current.follower
        old_behind = following_acceleration(follower, vehicle, current_limit)
        old_behind_after = _following(follower, current, current_limit)

    incentive = (own_after - own) + vehicle.driver.politeness * (
        (new_behind_after - new_behind) + (old_behind_after - old_behind)
    )
    verdict = (LaneChangeVerdict.APPROVED if incentive > vehicle.driver.lane_change_threshold
               else LaneChangeVerdict.NO_INCENTIVE)
    return LaneChangeDecision(vehicle.id, target_lane, verdict, incentive, new_behind_after)


def choose_lane_change(decisions: Iterable[LaneChangeDecision]) -> Optional[LaneChangeDecision]:
    """Pick the approved decision with strictly the highest incentive; a tie means stay."""
    approved = [d for d in decisions if d.approved]
    if not approved:
        return None
    approved.sort(key=lambda d: d.incentive, reverse=True)
    if len(approved) > 1 and approved[0].incentive == approved[1].incentive:
        return None
    return approved[0]
