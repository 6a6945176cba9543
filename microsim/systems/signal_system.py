from typing import Dict, Mapping

from microsim.controllers.base import Controller, Permissions
from microsim.domain.graph import RoadNetwork
from microsim.domain.models import ActuatedPlan
from microsim.kernel.lane_index import LaneIndex


class SignalSystem:
    """Advances every controller exactly once per tick."""

    def __init__(self, network: RoadNetwork, controllers: Mapping[str, Controller]):
        self.network = network
        self.controllers = controllers

    def update(self, dt: float, lane_index: LaneIndex) -> Dict[str, Permissions]:
        permissions = {}
        for intersection_id in sorted(self.controllers):
            controller = self.controllers[intersection_id]
            demand = self.measure_demand(intersection_id, controller, lane_index)
            permissions[intersection_id] = controller.run_tick(dt, demand)
        return permissions

    def measure_demand(self, intersection_id: str, controller: Controller, lane_index: LaneIndex) -> Dict[str, bool]:
        """Presence detector per movement: a vehicle bound for it within the detector zone."""
        plan = getattr(controller, "plan", None)
        if not isinstance(plan, ActuatedPlan):
            return {}
        demand = {}
        for movement in self.network.intersections[intersection_id].movements:
            lane = self.network.lane(movement.from_lane)
            demand[movement.id] = any(
                v.next_lane_id == movement.to_lane and lane.length - v.position <= plan.detector_length
                for v in lane_index.vehicles_in(lane.id)
            )
        return demand

    def current(self) -> Dict[str, Permissions]:
        return {i: self.controllers[i].permissions() for i in sorted(self.controllers)}
