import json
import random
from enum import Enum
from pathlib import Path
from typing import Annotated, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

from microsim.domain import config


class SignalState(str, Enum):
    RED = "RED"
    YELLOW = "YELLOW"
    GREEN = "GREEN"


class PhaseStage(str, Enum):
    GREEN = "GREEN"
    YELLOW = "YELLOW"
    ALL_RED = "ALL_RED"


class ControllerMode(str, Enum):
    FIXED = "fixed"
    ACTUATED = "actuated"


class GapAcceptanceMode(str, Enum):
    DETERMINISTIC = "deterministic"
    URGENCY = "urgency"
    LOGIT = "logit"


class TurnType(str, Enum):
    STRAIGHT = "STRAIGHT"
    LEFT = "LEFT"
    RIGHT = "RIGHT"


class Blinker(str, Enum):
    NONE = "NONE"
    LEFT = "LEFT"
    RIGHT = "RIGHT"


# Driver parameters

def _lerp(a: float, b: float, t: float) -> float:
    return a + (b - a) * t


def _blend(rng: random.Random, cautious: float, aggressive: float, aggression: float, jitter: float) -> float:
    return _lerp(cautious, aggressive, aggression) + jitter * (rng.random() * 2.0 - 1.0)


class DriverParams(BaseModel):
    """Per-driver IDM/MOBIL/gap-acceptance parameters.

    Accepts the short configuration names (``v0``, ``s0``, ``T``, ``a``, ``b``,
    ``p``, ``b_safe``, ``threshold``, ``t_critical``) as aliases.
    """
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    desired_velocity: float = Field(config.DESIRED_VELOCITY, alias="v0", gt=0)
    min_gap: float = Field(config.MIN_GAP, alias="s0", ge=0)
    time_headway: float = Field(config.TIME_HEADWAY, alias="T", ge=0)
    max_acceleration: float = Field(config.MAX_ACCELERATION, alias="a", gt=0)
    comfortable_deceleration: float = Field(config.COMFORTABLE_DECELERATION, alias="b", gt=0)
    politeness: float = Field(config.POLITENESS, alias="p", ge=0, le=1)
    safe_braking: float = Field(config.SAFE_BRAKING, alias="b_safe", gt=0)
    lane_change_threshold: float = Field(config.LANE_CHANGE_THRESHOLD, alias="threshold", ge=0)
    critical_gap: float = Field(config.CRITICAL_GAP, alias="t_critical", gt=0)
    max_deceleration: float = Field(config.MAX_DECELERATION, gt=0)

    @classmethod
    def from_aggression(cls, aggression: float, rng: random.Random) -> "DriverParams":
        """Blend a cautious and an aggressive profile, with seeded jitter."""
        aggression = min(1.0, max(0.0, aggression))
        return cls(
            desired_velocity=_lerp(config.DESIRED_VELOCITY * 0.8, config.DESIRED_VELOCITY * 1.2, aggression),
            time_headway=max(0.5, _blend(rng, 1.5, 0.8, aggression, 0.2)),
            min_gap=max(0.5, _blend(rng, 2.0, 1.0, aggression, 0.5)),
            max_acceleration=max(0.5, _blend(rng, 1.0, 3.0, aggression, 0.5)),
            comfortable_deceleration=max(0.5, _blend(rng, 1.5, 3.0, aggression, 0.5)),
            politeness=_lerp(0.5, 0.0, aggression),
            critical_gap=max(1.0, _blend(rng, 6.0, 4.0, aggression, 0.2)),
        )


# Vehicles

class Vehicle(BaseModel):
    id: str
    lane_id: str
    position: float  # front bumper, metres from lane start
    velocity: float = Field(0.0, ge=0)
    length: float = Field(config.VEHICLE_LENGTH, gt=0)
    driver: DriverParams = Field(default_factory=DriverParams)
    driver_class: str = "default"
    next_lane_id: Optional[str] = None
    acceleration: float = 0.0
    acceleration_override: Optional[float] = None  # externally controlled
    lane_change_cooldown: int = 0
    wait_time: float = 0.0
    arrival_order: Optional[int] = None
    cleared: bool = False
    blinker: Blinker = Blinker.NONE

    @property
    def rear(self) -> float:
        return self.position - self.length


# Geometry

class Lane(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    length: float = Field(gt=0)
    left: Optional[str] = None
    right: Optional[str] = None
    speed_limit: Optional[float] = Field(None, gt=0)
    internal: bool = False  # connector lane inside an intersection box


class Movement(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    from_lane: str
    to_lane: str
    priority: int = 0
    turn: TurnType = TurnType.STRAIGHT


class IntersectionSpec(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    movements: List[Movement]
    conflicts: List[List[str]] = []


# Signal plans

class FixedPhase(BaseModel):
    movements: List[str]
    green: float = Field(gt=0)
    yellow: float = Field(config.YELLOW_TIME, ge=0)
    all_red: float = Field(config.ALL_RED_TIME, ge=0)


class FixedTimePlan(BaseModel):
    mode: Literal["fixed"] = "fixed"
    phases: List[FixedPhase] = Field(min_length=1)


class ActuatedPhase(BaseModel):
    movements: List[str]
    min_green: float = Field(config.MIN_GREEN_TIME, ge=0)
    max_green: float = Field(config.MAX_GREEN_TIME, gt=0)
    yellow: float = Field(config.YELLOW_TIME, ge=0)
    all_red: float = Field(config.ALL_RED_TIME, ge=0)

    @model_validator(mode="after")
    def _check_green_bounds(self):
        if self.min_green > self.max_green:
            raise ValueError("min_green must not exceed max_green")
        return self


class ActuatedPlan(BaseModel):
    mode: Literal["actuated"] = "actuated"
    phases: List[ActuatedPhase] = Field(min_length=1)
    gap_out_timeout: float = Field(config.GAP_OUT_TIMEOUT, gt=0)
    detector_length: float = Field(config.DETECTOR_LENGTH, gt=0)


SignalPlan = Annotated[Union[FixedTimePlan, ActuatedPlan], Field(discriminator="mode")]


# Simulation configuration

class LaneChangeConfig(BaseModel):
    # Cool-down between changes is not part of MOBIL itself.
    cooldown_ticks: int = Field(config.LANE_CHANGE_COOLDOWN_TICKS, ge=0)
    no_change_zone: float = Field(config.NO_CHANGE_ZONE, ge=0)
    enabled: bool = True


class GapAcceptanceConfig(BaseModel):
    mode: GapAcceptanceMode = GapAcceptanceMode.DETERMINISTIC
    urgency_decay: float = Field(config.URGENCY_DECAY, ge=0)
    critical_gap_floor: float = Field(config.CRITICAL_GAP_FLOOR, gt=0)
    logit_beta: float = Field(config.LOGIT_BETA, gt=0)
    min_safe_distance: float = Field(config.MIN_SAFE_DISTANCE, ge=0)
    approach_distance: float = Field(config.APPROACH_DISTANCE, gt=0)


class SpawnerConfig(BaseModel):
    lane_id: str
    rate: float = Field(gt=0)  # vehicles per second
    driver_class: str = "default"
    initial_velocity: float = Field(0.0, ge=0)
    length: float = Field(config.VEHICLE_LENGTH, gt=0)


class SimulationConfig(BaseModel):
    dt: float = Field(config.DT, gt=0)
    seed: int = config.DEFAULT_SEED
    v_max: float = Field(config.V_MAX, gt=0)
    lookahead_distance: float = Field(config.LOOKAHEAD_DISTANCE, gt=0)
    driver_classes: Dict[str, DriverParams] = Field(default_factory=lambda: {"default": DriverParams()})
    lane_change: LaneChangeConfig = Field(default_factory=LaneChangeConfig)
    gap_acceptance: GapAcceptanceConfig = Field(default_factory=GapAcceptanceConfig)
    signal_plans: Dict[str, SignalPlan] = {}
    spawners: List[SpawnerConfig] = []

    @model_validator(mode="after")
    def _check_driver_classes(self):
        if not self.driver_classes:
            raise ValueError("at least one driver class is required")
        for spawner in self.spawners:
            if spawner.driver_class not in self.driver_classes:
                raise ValueError(f"spawner on {spawner.lane_id} uses unknown driver class {spawner.driver_class!r}")
        return self

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "SimulationConfig":
        return cls.model_validate(json.loads(Path(path).read_text()))


# Snapshot / API models

class VehicleSnapshot(BaseModel):
    id: str
    lane_id: str
    position: float
    velocity: float
    acceleration: float
    length: float
    blinker: Blinker


class IntersectionSnapshot(BaseModel):
    id: str
    mode: Optional[ControllerMode] = None  # None for uncontrolled
    phase_index: int = 0
    stage: Optional[PhaseStage] = None
    elapsed: float = 0.0
    green: List[str] = []
    yellow: List[str] = []


class SimulationStats(BaseModel):
    lane_changes: int = 0
    rejected_lane_changes: int = 0
    guard_interventions: int = 0
    held_entries: int = 0
    invariant_violations: int = 0
    spawned: int = 0
    despawned: int = 0


class WorldSnapshot(BaseModel):
    tick: int
    time: float
    vehicles: List[VehicleSnapshot]
    intersections: List[IntersectionSnapshot]
    stats: SimulationStats


class StepRequest(BaseModel):
    # Stepping runs inline on the event loop.
    ticks: int = Field(1, ge=0, le=1_000)


class SpawnRequest(BaseModel):
    lane_id: str
    position: float = 0.0
    velocity: float = Field(0.0, ge=0)
    length: float = Field(config.VEHICLE_LENGTH, gt=0)
    driver_class: str = "default"
    id: Optional[str] = None
