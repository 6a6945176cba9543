from dataclasses import dataclass

from microsim.domain.models import Vehicle


@dataclass(frozen=True)
class LongitudinalUpdate:
    position: float
    velocity: float
    acceleration: float
    guarded: bool = False


class VehicleSystem:
    """Semi-implicit Euler integration with a collision guard."""

    def __init__(self, dt: float, v_max: float):
        self.dt = dt
        self.v_max = v_max

    def integrate(self, vehicle: Vehicle, acceleration: float, limit: float) -> LongitudinalUpdate:
        """Velocity first, then position with the new velocity.

        ``limit`` is the furthest the front bumper may reach this tick (leader's
        start-of-tick rear or a stop line, minus a margin). The vehicle never
        moves backwards.
        """
        dt = self.dt
        velocity = min(self.v_max, max(0.0, vehicle.velocity + acceleration * dt))
        position = vehicle.position + velocity * dt
        if position <= limit:
            return LongitudinalUpdate(position, velocity, (velocity - vehicle.velocity) / dt)

        position = max(vehicle.position, limit)
        velocity = (position - vehicle.position) / dt
        return LongitudinalUpdate(position, velocity, (velocity - vehicle.velocity) / dt, guarded=True)
