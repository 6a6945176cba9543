from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import FrozenSet, Mapping

from microsim.domain.models import ControllerMode, IntersectionSnapshot, PhaseStage, SignalState


@dataclass(frozen=True)
class Permissions:
    """Movements allowed to proceed this tick; anything not listed is red."""
    green: FrozenSet[str] = frozenset()
    yellow: FrozenSet[str] = frozenset()

    def indication(self, movement_id: str) -> SignalState:
        if movement_id in self.green:
            return SignalState.GREEN
        if movement_id in self.yellow:
            return SignalState.YELLOW
        return SignalState.RED

    def allows(self, movement_id: str) -> bool:
        return movement_id in self.green or movement_id in self.yellow


@dataclass
class ControllerState:
    phase_index: int = 0
    stage: PhaseStage = PhaseStage.GREEN
    elapsed: float = 0.0
    idle: float = 0.0  # time since the phase detector last saw demand


class Controller(ABC):
    mode: ControllerMode

    def __init__(self, intersection_id: str):
        self.intersection_id = intersection_id
        self.state = ControllerState()

    @abstractmethod
    def run_tick(self, dt: float, demand: Mapping[str, bool]) -> Permissions:
        """Advance the state machine by ``dt`` and return this tick's permissions.

        ``demand`` maps movement id to detector presence; fixed-time plans ignore it.
        """

    @abstractmethod
    def permissions(self) -> Permissions:
        pass

    def snapshot(self) -> IntersectionSnapshot:
        permissions = self.permissions()
        return IntersectionSnapshot(
            id=self.intersection_id,
            mode=self.mode,
            phase_index=self.state.phase_index,
            stage=self.state.stage,
            elapsed=self.state.elapsed,
            green=sorted(permissions.green),
            yellow=sorted(permissions.yellow),
        )
