"""
Intelligent Driver Model (IDM) for car-following.

Units: metres, seconds, m/s, m/s^2.

Everything in this module is pure: the lane-change evaluator calls it for
hypothetical leader/follower pairings that are never committed.
"""

import math
from dataclasses import dataclass
from typing import Optional

from microsim.domain.models import DriverParams, Vehicle


@dataclass(frozen=True)
class KinematicContext:
    """Own state plus leader context for one IDM evaluation."""
    velocity: float
    desired_velocity: float
    min_gap: float
    time_headway: float
    max_acceleration: float
    comfortable_deceleration: float
    max_deceleration: float
    gap: float = math.inf
    delta_v: float = 0.0  # own velocity minus leader velocity


def idm_acceleration(ctx: KinematicContext) -> float:
    v = ctx.velocity
    a = ctx.max_acceleration
    free_road = 1.0 - (v / ctx.desired_velocity) ** 4

    if math.isinf(ctx.gap):
        interaction = 0.0
    elif ctx.gap <= 0.0:
        # Overlap can only appear in a hypothetical pairing; brake as hard as allowed.
        return -ctx.max_deceleration
    else:
        dynamic = v * ctx.time_headway + v * ctx.delta_v / (2.0 * math.sqrt(a * ctx.comfortable_deceleration))
        desired_gap = ctx.min_gap + max(0.0, dynamic)
        interaction = (desired_gap / ctx.gap) ** 2

    return max(-ctx.max_deceleration, a * (free_road - interaction))


def desired_velocity(driver: DriverParams, speed_limit: Optional[float] = None) -> float:
    if speed_limit is None:
        return driver.desired_velocity
    return min(driver.desired_velocity, speed_limit)


def context(driver: DriverParams, velocity: float, gap: float = math.inf, leader_velocity: float = 0.0,
            speed_limit: Optional[float] = None) -> KinematicContext:
    return KinematicContext(
        velocity=velocity,
        desired_velocity=desired_velocity(driver, speed_limit),
        min_gap=driver.min_gap,
        time_headway=driver.time_headway,
        max_acceleration=driver.max_acceleration,
        comfortable_deceleration=driver.comfortable_deceleration,
        max_deceleration=driver.max_deceleration,
        gap=gap,
        delta_v=0.0 if math.isinf(gap) else velocity - leader_velocity,
    )


def gap_between(follower: Vehicle, leader: Optional[Vehicle]) -> float:
    """Bumper-to-bumper gap on a shared lane coordinate; inf without a leader."""
    if leader is None:
        return math.inf
    return leader.rear - follower.position


def following_acceleration(follower: Vehicle, leader: Optional[Vehicle],
                           speed_limit: Optional[float] = None) -> float:
    """IDM acceleration of ``follower`` behind ``leader`` (both in the same lane coordinate)."""
    gap = gap_between(follower, leader)
    leader_velocity = leader.velocity if leader is not None else 0.0
    return idm_acceleration(context(follower.driver, follower.velocity, gap, leader_velocity, speed_limit))


def stopping_distance(velocity: float, deceleration: float) -> float:
    return velocity * velocity / (2.0 * deceleration)
