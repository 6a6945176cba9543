from typing import Mapping

from microsim.controllers.base import Controller
from microsim.domain.graph import RoadNetwork
from microsim.domain.models import IntersectionSnapshot, VehicleSnapshot, WorldSnapshot
from microsim.domain.state import SimulationState


class SnapshotBuilder:
    def build(self, state: SimulationState, network: RoadNetwork,
              controllers: Mapping[str, Controller]) -> WorldSnapshot:
        return WorldSnapshot(
            tick=state.tick_id,
            time=state.time,
            vehicles=[
                VehicleSnapshot(
                    id=v.id,
                    lane_id=v.lane_id,
                    position=v.position,
                    velocity=v.velocity,
                    acceleration=v.acceleration,
                    length=v.length,
                    blinker=v.blinker,
                )
                for v in sorted(state.vehicles.values(), key=lambda v: v.id)
            ],
            intersections=[
                controllers[i].snapshot() if i in controllers else IntersectionSnapshot(id=i)
                for i in sorted(network.intersections)
            ],
            stats=state.stats.model_copy(),
        )
