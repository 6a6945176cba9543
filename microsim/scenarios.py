"""Sample geometries and plans used by the HTTP host, the runner and the tests."""
from typing import List, Optional

from microsim.domain.graph import RoadNetwork
from microsim.domain.models import (
    ActuatedPhase, ActuatedPlan, FixedPhase, FixedTimePlan, IntersectionSpec, Lane, Movement,
    SimulationConfig, SpawnerConfig
)

# Approach name -> the approach it exits towards when going straight
_STRAIGHT = {"N": "S", "S": "N", "E": "W", "W": "E"}
NS_MOVEMENTS = ["N_S", "S_N"]
EW_MOVEMENTS = ["E_W", "W_E"]


def single_lane_road(length: float = 1000.0, speed_limit: Optional[float] = None,
                     lane_id: str = "L0") -> RoadNetwork:
    network = RoadNetwork()
    network.add_lane(Lane(id=lane_id, length=length, speed_limit=speed_limit))
    return network.validate()


def multi_lane_road(lanes: int = 2, length: float = 1000.0, speed_limit: Optional[float] = None) -> RoadNetwork:
    """Parallel lanes ``L0`` (rightmost) to ``L{n-1}`` (leftmost), ending in sinks."""
    ids = [f"L{i}" for i in range(lanes)]
    network = RoadNetwork()
    for i, lane_id in enumerate(ids):
        network.add_lane(Lane(
            id=lane_id,
            length=length,
            speed_limit=speed_limit,
            left=ids[i + 1] if i + 1 < lanes else None,
            right=ids[i - 1] if i > 0 else None,
        ))
    return network.validate()


def signalized_crossroads(approach_length: float = 200.0, box_length: float = 20.0,
                          exit_length: float = 200.0, intersection_id: str = "X1") -> RoadNetwork:
    """Four single-lane approaches crossing straight through an intersection box.

    ``N_in`` -> ``N_S`` (internal) -> ``S_out`` and so on. North-south
    movements conflict with east-west ones.
    """
    network = RoadNetwork()
    movements = []
    for origin, destination in sorted(_STRAIGHT.items()):
        movement_id = f"{origin}_{destination}"
        network.add_lane(Lane(id=f"{origin}_in", length=approach_length))
        network.add_lane(Lane(id=movement_id, length=box_length, internal=True))
        network.add_lane(Lane(id=f"{destination}_out", length=exit_length))
        movements.append(Movement(id=movement_id, from_lane=f"{origin}_in", to_lane=movement_id))

    for movement in movements:
        network.connect(movement.to_lane, f"{_STRAIGHT[movement.from_lane[0]]}_out")

    conflicts = [[ns, ew] for ns in NS_MOVEMENTS for ew in EW_MOVEMENTS]
    network.add_intersection(IntersectionSpec(id=intersection_id, movements=movements, conflicts=conflicts))
    return network.validate()


def two_phase_plan(green: float = 30.0, yellow: float = 3.0, all_red: float = 2.0) -> FixedTimePlan:
    return FixedTimePlan(phases=[
        FixedPhase(movements=NS_MOVEMENTS, green=green, yellow=yellow, all_red=all_red),
        FixedPhase(movements=EW_MOVEMENTS, green=green, yellow=yellow, all_red=all_red),
    ])


def two_phase_actuated_plan(min_green: float = 5.0, max_green: float = 40.0, gap_out_timeout: float = 3.0,
                            detector_length: float = 30.0) -> ActuatedPlan:
    return ActuatedPlan(
        phases=[
            ActuatedPhase(movements=NS_MOVEMENTS, min_green=min_green, max_green=max_green),
            ActuatedPhase(movements=EW_MOVEMENTS, min_green=min_green, max_green=max_green),
        ],
        gap_out_timeout=gap_out_timeout,
        detector_length=detector_length,
    )


def merge_junction(main_length: float = 300.0, ramp_length: float = 150.0, exit_length: float = 300.0,
                   intersection_id: str = "M1") -> RoadNetwork:
    """An on-ramp yielding to the main road; uncontrolled, resolved by priority."""
    network = RoadNetwork()
    network.add_lane(Lane(id="main", length=main_length))
    network.add_lane(Lane(id="ramp", length=ramp_length))
    network.add_lane(Lane(id="merged", length=exit_length))
    network.add_intersection(IntersectionSpec(
        id=intersection_id,
        movements=[
            Movement(id="main_merged", from_lane="main", to_lane="merged", priority=1),
            Movement(id="ramp_merged", from_lane="ramp", to_lane="merged", priority=0),
        ],
        conflicts=[["main_merged", "ramp_merged"]],
    ))
    return network.validate()


def demo_config(seed: int = 42, rate: float = 0.2, actuated: bool = False) -> SimulationConfig:
    """Crossroads with spawners on every approach."""
    spawners: List[SpawnerConfig] = [
        SpawnerConfig(lane_id=f"{origin}_in", rate=rate, initial_velocity=10.0) for origin in sorted(_STRAIGHT)
    ]
    plan = two_phase_actuated_plan() if actuated else two_phase_plan()
    return SimulationConfig(seed=seed, signal_plans={"X1": plan}, spawners=spawners)
