import logging
import random
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Union

from pydantic import ValidationError

from microsim.arbitration.lane_change_arbitrator import LaneChangeArbitrator, LaneChangeIntent
from microsim.controllers.base import Controller, Permissions
from microsim.controllers.implementations import build_controller
from microsim.domain import config as defaults
from microsim.domain.errors import ConfigurationError
from microsim.domain.graph import RoadNetwork
from microsim.domain.models import (
    Blinker, IntersectionSnapshot, Lane, Movement, SignalState, SimulationConfig, TurnType, Vehicle, WorldSnapshot
)
from microsim.domain.state import SimulationState
from microsim.kernel.command_queue import CommandQueue
from microsim.kernel.commands import Command
from microsim.kernel.lane_index import LaneIndex
from microsim.kernel.snapshot_builder import SnapshotBuilder
from microsim.systems.gap_acceptance import Claim, has_right_of_way, policy_from_config, time_to_arrival
from microsim.systems.kinematics import context, idm_acceleration, stopping_distance
from microsim.systems.lane_change import LaneNeighbours, choose_lane_change, evaluate_lane_change
from microsim.systems.signal_system import SignalSystem
from microsim.systems.vehicle_system import LongitudinalUpdate, VehicleSystem

log = logging.getLogger(__name__)

_TURN_BLINKER = {TurnType.LEFT: Blinker.LEFT, TurnType.RIGHT: Blinker.RIGHT, TurnType.STRAIGHT: Blinker.NONE}


@dataclass(frozen=True)
class GateDecision:
    movement: Movement
    blocked: bool
    waiting: bool = False  # rejected by gap acceptance; accumulates wait time
    clear: bool = False    # past the point of no return; latch until the lane is left


@dataclass
class TickBuffer:
    """Everything decided during steps 2-5; applied only by the commit."""
    assignments: Dict[str, str] = field(default_factory=dict)
    next_lanes: Dict[str, Optional[str]] = field(default_factory=dict)
    rejected_changes: int = 0
    gates: Dict[str, GateDecision] = field(default_factory=dict)
    start_positions: Dict[str, float] = field(default_factory=dict)
    updates: Dict[str, LongitudinalUpdate] = field(default_factory=dict)


def _overlaps(front: float, rear: float, other: Vehicle) -> bool:
    # Touching bumpers count as overlap.
    return rear <= other.position and other.rear <= front


class SimulationKernel:
    """The simulation world: owns state, lane index and controllers.

    The host calls :meth:`run_tick` (or :meth:`run`) and polls
    :meth:`get_snapshot`. Each tick reads only the state committed by the
    previous one; every decision is buffered and committed together.
    """

    def __init__(self, network: RoadNetwork, config: Union[SimulationConfig, dict, None] = None,
                 vehicles: Iterable[Vehicle] = ()):
        if isinstance(config, dict):
            try:
                config = SimulationConfig.model_validate(config)
            except ValidationError as exc:
                raise ConfigurationError(str(exc)) from exc
        self.config = config or SimulationConfig()
        self.network = network if network.validated else network.validate()
        self.dt = self.config.dt
        self._check_configuration()

        self.command_queue = CommandQueue()
        self.vehicle_system = VehicleSystem(self.config.dt, self.config.v_max)
        self.gap_policy = policy_from_config(self.config.gap_acceptance)
        self.snapshot_builder = SnapshotBuilder()
        self.controllers: Dict[str, Controller] = {}
        self.permissions: Dict[str, Permissions] = {}
        self.initialize(self.config.seed, vehicles)

    def _check_configuration(self):
        for intersection_id, plan in self.config.signal_plans.items():
            spec = self.network.intersections.get(intersection_id)
            if spec is None:
                raise ConfigurationError(f"signal plan for unknown intersection {intersection_id!r}")
            known = {m.id for m in spec.movements}
            for phase in plan.phases:
                unknown = set(phase.movements) - known
                if unknown:
                    raise ConfigurationError(f"phase in {intersection_id} references unknown movements {sorted(unknown)}")
        for spawner in self.config.spawners:
            if not self.network.has_lane(spawner.lane_id):
                raise ConfigurationError(f"spawner references unknown lane {spawner.lane_id!r}")

    def initialize(self, seed: Optional[int] = None, vehicles: Iterable[Vehicle] = ()):
        seed = self.config.seed if seed is None else seed
        self.state = SimulationState(rng=random.Random(seed), spawn_timers=[0.0] * len(self.config.spawners))
        self.controllers = {
            i: build_controller(i, plan) for i, plan in sorted(self.config.signal_plans.items())
        }
        self.signal_system = SignalSystem(self.network, self.controllers)
        self.permissions = self.signal_system.current()
        self.lane_index = LaneIndex(self.network)
        self.command_queue.clear()
        for vehicle in vehicles:
            self.add_vehicle(vehicle)
        log.info("Kernel initialized (seed %d, %d vehicles, %d signalised intersections)",
                 seed, len(self.state.vehicles), len(self.controllers))

    # Vehicle management (between ticks only)

    def add_vehicle(self, vehicle: Vehicle) -> Vehicle:
        if vehicle.id in self.state.vehicles:
            raise ConfigurationError(f"duplicate vehicle id {vehicle.id!r}")
        lane = self.network.lane(vehicle.lane_id)
        if not 0.0 <= vehicle.position < lane.length:
            raise ConfigurationError(f"vehicle {vehicle.id} position {vehicle.position} is outside lane {lane.id}")
        for other in self.lane_index.vehicles_in(lane.id):
            if _overlaps(vehicle.position, vehicle.rear, other):
                raise ConfigurationError(f"vehicle {vehicle.id} overlaps {other.id} on lane {lane.id}")
        if vehicle.next_lane_id not in self.network.successors(lane.id):
            vehicle.next_lane_id = self._choose_next_lane(lane.id)
        self.state.vehicles[vehicle.id] = vehicle
        self.lane_index.insert(vehicle)
        self.lane_index.resort([lane.id])
        return vehicle

    def spawn_vehicle(self, lane_id: str, position: float = 0.0, velocity: float = 0.0,
                      length: float = defaults.VEHICLE_LENGTH, driver_class: str = "default",
                      vehicle_id: Optional[str] = None) -> Optional[Vehicle]:
        """Place a new vehicle; returns ``None`` when the spot is occupied."""
        if driver_class not in self.config.driver_classes:
            raise ConfigurationError(f"unknown driver class {driver_class!r}")
        self.network.lane(lane_id)
        if vehicle_id is None:
            vehicle_id = f"v-{self.state.next_vehicle_seq}"
            self.state.next_vehicle_seq += 1
        vehicle = Vehicle(id=vehicle_id, lane_id=lane_id, position=position, velocity=velocity, length=length,
                          driver=self.config.driver_classes[driver_class], driver_class=driver_class)
        try:
            self.add_vehicle(vehicle)
        except ConfigurationError as exc:
            log.warning("Spawn rejected: %s", exc)
            return None
        self.state.stats.spawned += 1
        return vehicle

    def remove_vehicle(self, vehicle_id: str) -> Optional[Vehicle]:
        vehicle = self.state.vehicles.pop(vehicle_id, None)
        if vehicle is not None:
            self.lane_index.remove(vehicle)
            self.lane_index.refresh([vehicle.lane_id])
        return vehicle

    def queue_command(self, command: Command):
        self.command_queue.add(command)

    def _choose_next_lane(self, lane_id: str) -> Optional[str]:
        successors = self.network.successors(lane_id)
        if not successors:
            return None
        if len(successors) == 1:
            return successors[0]
        return self.state.rng.choice(successors)

    # Tick

    def run(self, ticks: int) -> WorldSnapshot:
        for _ in range(ticks):
            self.run_tick()
        return self.get_snapshot()

    def run_tick(self):
        commands = self.command_queue.pop_all()
        while commands:
            commands.popleft().execute(self)

        # 1. Neighbour caches from the committed positions
        self.lane_index.refresh()
        order = self.lane_index.canonical_order()
        buffer = TickBuffer()

        # 2. Lane-change intents, then conflict resolution
        self._plan_lane_changes(order, buffer)

        # 3. Signal state machines, once each
        self.permissions = self.signal_system.update(self.dt, self.lane_index)

        # 4. Gated conflict points
        self._evaluate_conflict_points(order, buffer)

        # 5. Longitudinal update against the (possibly new) leader
        planned = self.lane_index.with_reassignments(buffer.assignments) if buffer.assignments else self.lane_index
        self._integrate(order, planned, buffer)

        # 6. Commit
        self._commit(order, buffer)

        self.state.tick_id += 1
        self.state.time = self.state.tick_id * self.dt
        self._run_spawners()

    # Step 2

    def _may_change_lane(self, vehicle: Vehicle) -> bool:
        lane = self.network.lane(vehicle.lane_id)
        return (
            vehicle.lane_change_cooldown == 0
            and vehicle.acceleration_override is None
            and not vehicle.cleared
            and not lane.internal
            and (lane.left is not None or lane.right is not None)
            and lane.length - vehicle.position > self.config.lane_change.no_change_zone
        )

    def _neighbours(self, vehicle: Vehicle, lane: Lane, leader: Optional[Vehicle], follower: Optional[Vehicle],
                    next_lane_id: Optional[str]) -> LaneNeighbours:
        """What ``vehicle`` would follow in ``lane``: the in-lane leader, else a
        vehicle past the lane end, and the stop line while it shows red."""
        obstacle, obstacle_velocity = None, 0.0
        remaining = lane.length - vehicle.position
        if leader is None:
            gap, beyond = self.lane_index.leader_beyond(lane.id, remaining, self.config.lookahead_distance,
                                                        next_lane_id)
            if beyond is not None:
                obstacle, obstacle_velocity = vehicle.position + gap, beyond.velocity
        if remaining <= self.config.gap_acceptance.approach_distance and self._red_ahead(lane.id, next_lane_id):
            obstacle, obstacle_velocity = lane.length, 0.0
        return LaneNeighbours(leader, follower, obstacle, obstacle_velocity)

    def _red_ahead(self, lane_id: str, next_lane_id: Optional[str]) -> bool:
        # Reads last tick's permissions; step 3 has not run yet.
        movement = self.network.movement_between(lane_id, next_lane_id)
        if movement is None:
            return False
        permissions = self.permissions.get(self.network.intersection_of(movement.id))
        return permissions is not None and permissions.indication(movement.id) == SignalState.RED

    def _plan_lane_changes(self, order: List[Vehicle], buffer: TickBuffer):
        if not self.config.lane_change.enabled:
            return
        arbitrator = LaneChangeArbitrator()
        for rank, vehicle in enumerate(order):
            if not self._may_change_lane(vehicle):
                continue
            lane = self.network.lane(vehicle.lane_id)
            current = self._neighbours(vehicle, lane, self.lane_index.leader(vehicle),
                                       self.lane_index.follower(vehicle), vehicle.next_lane_id)
            decisions = []
            for target_id in (lane.left, lane.right):
                if target_id is None:
                    continue
                target = self.network.lane(target_id)
                leader, follower = self.lane_index.neighbours_at(target_id, vehicle.position)
                successors = self.network.successors(target_id)
                next_lane = successors[0] if len(successors) == 1 else None
                decisions.append(evaluate_lane_change(
                    vehicle, target_id, current, self._neighbours(vehicle, target, leader, follower, next_lane),
                    lane.speed_limit, target.speed_limit,
                ))
            choice = choose_lane_change(decisions)
            if choice is not None:
                arbitrator.submit(LaneChangeIntent(vehicle.id, vehicle.lane_id, choice.target_lane,
                                                   choice.incentive, vehicle.position, vehicle.rear, rank))

        approved, rejected = arbitrator.resolve()
        for intent in rejected:
            log.warning("Lane change %s -> %s rejected: overlapping intent", intent.vehicle_id, intent.target_lane)
        buffer.rejected_changes = len(rejected)
        for intent in approved:
            buffer.assignments[intent.vehicle_id] = intent.target_lane
            buffer.next_lanes[intent.vehicle_id] = self._choose_next_lane(intent.target_lane)

    # Step 4

    def _evaluate_conflict_points(self, order: List[Vehicle], buffer: TickBuffer):
        approach = self.config.gap_acceptance.approach_distance
        for vehicle in order:
            changed = vehicle.id in buffer.assignments
            lane_id = buffer.assignments.get(vehicle.id, vehicle.lane_id)
            next_lane = buffer.next_lanes[vehicle.id] if changed else vehicle.next_lane_id
            movement = self.network.movement_between(lane_id, next_lane)
            if movement is None:
                continue
            distance = self.network.lane(lane_id).length - vehicle.position
            if distance > approach:
                continue
            buffer.gates[vehicle.id] = self._gate(vehicle, movement, distance, changed)

    def _gate(self, vehicle: Vehicle, movement: Movement, distance: float, changed: bool) -> GateDecision:
        if vehicle.cleared and not changed:
            return GateDecision(movement, blocked=False)

        can_stop = stopping_distance(vehicle.velocity, vehicle.driver.comfortable_deceleration) < distance
        permissions = self.permissions.get(self.network.intersection_of(movement.id))
        if permissions is not None:
            indication = permissions.indication(movement.id)
            if indication == SignalState.RED:
                return GateDecision(movement, blocked=True)
            if indication == SignalState.YELLOW:
                # Dilemma zone: go only when a comfortable stop is no longer possible.
                return GateDecision(movement, blocked=can_stop, clear=not can_stop)

        arrival_order = None if changed else vehicle.arrival_order
        gap = self._conflict_gap(vehicle, movement, permissions, arrival_order)
        wait_time = 0.0 if changed else vehicle.wait_time
        if not self.gap_policy.accepts(gap, vehicle.driver.critical_gap, wait_time, self.state.rng):
            return GateDecision(movement, blocked=True, waiting=True)
        return GateDecision(movement, blocked=False, clear=not can_stop)

    def _conflict_gap(self, vehicle: Vehicle, movement: Movement, permissions: Optional[Permissions],
                      arrival_order: Optional[int]) -> float:
        """Time until the nearest conflicting vehicle with right of way reaches the conflict."""
        cfg = self.config.gap_acceptance
        best = float("inf")
        mine = Claim(movement.priority, movement.turn, arrival_order, vehicle.id)
        for other_id in sorted(self.network.conflicting(movement.id)):
            other = self.network.movement(other_id)

            # Somebody is already inside the conflict area.
            if movement.priority <= other.priority:
                box = self.network.lane(other.to_lane)
                zone = box.length if box.internal else cfg.min_safe_distance
                occupant = self.lane_index.rearmost(other.to_lane)
                if occupant is not None and occupant.rear < zone:
                    return 0.0

            if permissions is not None and not permissions.allows(other_id):
                continue
            from_lane = self.network.lane(other.from_lane)
            for candidate in reversed(self.lane_index.vehicles_in(other.from_lane)):
                distance = from_lane.length - candidate.position
                if distance > cfg.approach_distance:
                    break
                if candidate.next_lane_id != other.to_lane:
                    continue
                theirs = Claim(other.priority, other.turn, candidate.arrival_order, candidate.id)
                if not has_right_of_way(theirs, mine):
                    continue
                best = min(best, time_to_arrival(distance, candidate.velocity, cfg.min_safe_distance,
                                                 defaults.MIN_CONFLICT_SPEED))
        return best

    # Step 5

    def _integrate(self, order: List[Vehicle], planned: LaneIndex, buffer: TickBuffer):
        lookahead = self.config.lookahead_distance
        for vehicle in order:
            changed = vehicle.id in buffer.assignments
            lane = self.network.lane(buffer.assignments.get(vehicle.id, vehicle.lane_id))
            next_lane = buffer.next_lanes[vehicle.id] if changed else vehicle.next_lane_id

            gap, leader = planned.leader_ahead(vehicle, lane.id, next_lane, lookahead)
            leader_velocity = leader.velocity if leader is not None else 0.0
            limit = vehicle.position + gap - defaults.GUARD_MARGIN

            gate = buffer.gates.get(vehicle.id)
            if gate is not None and gate.blocked:
                stop_gap = lane.length - vehicle.position
                if stop_gap < gap:
                    gap, leader_velocity = stop_gap, 0.0
                limit = min(limit, lane.length - defaults.GUARD_MARGIN)

            if vehicle.acceleration_override is not None:
                acceleration = vehicle.acceleration_override
            else:
                if gap <= 0.0:
                    log.debug("Vehicle %s has non-positive gap %.3f at tick %d", vehicle.id, gap, self.state.tick_id)
                acceleration = idm_acceleration(
                    context(vehicle.driver, vehicle.velocity, gap, leader_velocity, lane.speed_limit)
                )

            buffer.start_positions[vehicle.id] = vehicle.position
            buffer.updates[vehicle.id] = self.vehicle_system.integrate(vehicle, acceleration, limit)

    # Step 6

    def _commit(self, order: List[Vehicle], buffer: TickBuffer):
        stats = self.state.stats
        stats.rejected_lane_changes += buffer.rejected_changes
        touched = set()
        entrants = []

        for vehicle in order:
            old_lane = self.network.lane(vehicle.lane_id)
            target = buffer.assignments.get(vehicle.id)
            if target is not None:
                vehicle.lane_id = target
                vehicle.next_lane_id = buffer.next_lanes[vehicle.id]
                vehicle.lane_change_cooldown = self.config.lane_change.cooldown_ticks
                self._reset_gate_state(vehicle)
                vehicle.blinker = Blinker.LEFT if target == old_lane.left else Blinker.RIGHT
                self.lane_index.move(vehicle, old_lane.id)
                touched.update((old_lane.id, target))
                stats.lane_changes += 1
            else:
                vehicle.lane_change_cooldown = max(0, vehicle.lane_change_cooldown - 1)
                vehicle.blinker = Blinker.NONE

            gate = buffer.gates.get(vehicle.id)
            if gate is not None:
                self._apply_gate(vehicle, gate, reset=target is not None)

            update = buffer.updates[vehicle.id]
            vehicle.position = update.position
            vehicle.velocity = update.velocity
            vehicle.acceleration = update.acceleration
            if update.guarded:
                stats.guard_interventions += 1
                log.debug("Collision guard engaged for %s at tick %d", vehicle.id, self.state.tick_id)

            if vehicle.position >= self.network.lane(vehicle.lane_id).length:
                entrants.append(vehicle)

        for vehicle in entrants:
            touched.update(self._enter_next_lane(vehicle, buffer))

        self.lane_index.resort(sorted(touched))
        self.lane_index.refresh()
        self._verify_invariants()

    def _apply_gate(self, vehicle: Vehicle, gate: GateDecision, reset: bool):
        if gate.waiting:
            vehicle.wait_time += self.dt
        if gate.clear:
            vehicle.cleared = True
        if vehicle.arrival_order is None:
            intersection_id = self.network.intersection_of(gate.movement.id)
            counter = self.state.arrival_counters.get(intersection_id, 0)
            vehicle.arrival_order = counter
            self.state.arrival_counters[intersection_id] = counter + 1
        if not reset:
            vehicle.blinker = _TURN_BLINKER[gate.movement.turn]

    @staticmethod
    def _reset_gate_state(vehicle: Vehicle):
        vehicle.cleared = False
        vehicle.arrival_order = None
        vehicle.wait_time = 0.0

    def _enter_next_lane(self, vehicle: Vehicle, buffer: TickBuffer) -> List[str]:
        """Carry a vehicle past its lane end; returns the lanes whose order changed."""
        origin = vehicle.lane_id
        lane_id, next_id, position = origin, vehicle.next_lane_id, vehicle.position
        while next_id is not None and position >= self.network.lane(lane_id).length:
            position -= self.network.lane(lane_id).length
            lane_id, next_id = next_id, self._choose_next_lane(next_id)

        if position >= self.network.lane(lane_id).length:
            # Sink: the lane has no successor.
            del self.state.vehicles[vehicle.id]
            self.lane_index.remove(vehicle, origin)
            self.state.stats.despawned += 1
            return [origin]

        rear = position - vehicle.length
        blocker = next((o for o in self.lane_index.vehicles_in(lane_id) if _overlaps(position, rear, o)), None)
        if blocker is not None:
            origin_length = self.network.lane(origin).length
            vehicle.position = max(buffer.start_positions[vehicle.id], origin_length - defaults.GUARD_MARGIN)
            vehicle.velocity = 0.0
            vehicle.acceleration = 0.0
            self.state.stats.held_entries += 1
            log.warning("Vehicle %s held at end of %s: entry into %s blocked by %s",
                        vehicle.id, origin, lane_id, blocker.id)
            return [origin]

        vehicle.lane_id = lane_id
        vehicle.next_lane_id = next_id
        vehicle.position = position
        self._reset_gate_state(vehicle)
        self.lane_index.move(vehicle, origin)
        return [origin, lane_id]

    def _verify_invariants(self):
        for lane in self.network.lanes():
            vehicles = self.lane_index.vehicles_in(lane.id)
            for follower, leader in zip(vehicles, vehicles[1:]):
                if leader.rear - follower.position < 0.0:
                    self.state.stats.invariant_violations += 1
                    log.warning("Overlap on %s between %s and %s at tick %d",
                              lane.id, follower.id, leader.id, self.state.tick_id)

    # Spawners (post-commit)

    def _run_spawners(self):
        for i, spawner in enumerate(self.config.spawners):
            interval = 1.0 / spawner.rate
            self.state.spawn_timers[i] += self.dt
            if self.state.spawn_timers[i] < interval - 1e-9:
                continue
            driver = self.config.driver_classes[spawner.driver_class]
            rearmost = self.lane_index.rearmost(spawner.lane_id)
            if rearmost is not None and rearmost.rear < spawner.length + driver.min_gap:
                # Wait for room; do not bank more than one pending spawn.
                self.state.spawn_timers[i] = interval
                continue
            self.state.spawn_timers[i] -= interval
            self.spawn_vehicle(spawner.lane_id, position=spawner.length, velocity=spawner.initial_velocity,
                               length=spawner.length, driver_class=spawner.driver_class)

    # Output

    def get_snapshot(self) -> WorldSnapshot:
        return self.snapshot_builder.build(self.state, self.network, self.controllers)

    def get_intersection_details(self, intersection_id: str) -> Optional[IntersectionSnapshot]:
        if intersection_id not in self.network.intersections:
            return None
        controller = self.controllers.get(intersection_id)
        return controller.snapshot() if controller else IntersectionSnapshot(id=intersection_id)
