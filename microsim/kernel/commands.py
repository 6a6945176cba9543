from abc import ABC, abstractmethod
from typing import Any, Optional

from microsim.domain.models import SpawnRequest


class Command(ABC):
    """A world edit applied at the start of the next tick, before step 1."""

    @abstractmethod
    def execute(self, kernel: Any):
        pass


class SpawnVehicleCommand(Command):
    def __init__(self, request: SpawnRequest):
        self.request = request

    def execute(self, kernel: Any):
        r = self.request
        return kernel.spawn_vehicle(r.lane_id, position=r.position, velocity=r.velocity, length=r.length,
                                    driver_class=r.driver_class, vehicle_id=r.id)


class RemoveVehicleCommand(Command):
    def __init__(self, vehicle_id: str):
        self.vehicle_id = vehicle_id

    def execute(self, kernel: Any):
        return kernel.remove_vehicle(self.vehicle_id)


class SetAccelerationOverrideCommand(Command):
    """Put a vehicle under external control; ``None`` hands it back to IDM."""

    def __init__(self, vehicle_id: str, acceleration: Optional[float]):
        self.vehicle_id = vehicle_id
        self.acceleration = acceleration

    def execute(self, kernel: Any):
        vehicle = kernel.state.vehicles.get(self.vehicle_id)
        if vehicle:
            vehicle.acceleration_override = self.acceleration
        return vehicle
