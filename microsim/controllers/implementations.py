from typing import List, Mapping, Union

from microsim.controllers.base import Controller, Permissions
from microsim.domain.models import (
    ActuatedPhase, ActuatedPlan, ControllerMode, FixedPhase, FixedTimePlan, PhaseStage
)

# Absorbs float drift when elapsed time is accumulated in fractional ticks.
_EPS = 1e-9


class PhasedController(Controller):
    """Shared GREEN -> YELLOW -> ALL_RED -> next phase machinery."""

    def __init__(self, intersection_id: str, phases: List[Union[FixedPhase, ActuatedPhase]]):
        super().__init__(intersection_id)
        self.phases = phases

    def permissions(self) -> Permissions:
        movements = frozenset(self.phases[self.state.phase_index].movements)
        if self.state.stage == PhaseStage.GREEN:
            return Permissions(green=movements)
        if self.state.stage == PhaseStage.YELLOW:
            return Permissions(yellow=movements)
        return Permissions()

    def _clearance_duration(self) -> float:
        phase = self.phases[self.state.phase_index]
        return phase.yellow if self.state.stage == PhaseStage.YELLOW else phase.all_red

    def _run_clearance(self, demand: Mapping[str, bool]):
        state = self.state
        while state.stage != PhaseStage.GREEN:
            duration = self._clearance_duration()
            if state.elapsed < duration - _EPS:
                break
            state.elapsed = max(0.0, state.elapsed - duration)
            if state.stage == PhaseStage.YELLOW:
                state.stage = PhaseStage.ALL_RED
            else:
                state.phase_index = self._next_phase(demand)
                state.stage = PhaseStage.GREEN
                state.idle = 0.0

    def _next_phase(self, demand: Mapping[str, bool]) -> int:
        return (self.state.phase_index + 1) % len(self.phases)

    def _has_demand(self, index: int, demand: Mapping[str, bool]) -> bool:
        return any(demand.get(m, False) for m in self.phases[index].movements)


class FixedTimeController(PhasedController):
    mode = ControllerMode.FIXED

    def __init__(self, intersection_id: str, plan: FixedTimePlan):
        super().__init__(intersection_id, plan.phases)
        self.plan = plan

    def run_tick(self, dt: float, demand: Mapping[str, bool]) -> Permissions:
        state = self.state
        state.elapsed += dt
        while True:
            if state.stage == PhaseStage.GREEN:
                green = self.phases[state.phase_index].green
                if state.elapsed < green - _EPS:
                    break
                state.elapsed = max(0.0, state.elapsed - green)
                state.stage = PhaseStage.YELLOW
            self._run_clearance(demand)
            if state.stage != PhaseStage.GREEN:
                break
        return self.permissions()


class ActuatedController(PhasedController):
    """Green extends while the phase detector is active, up to ``max_green``.

    After ``min_green`` the phase gaps out once its detector has been idle for
    ``gap_out_timeout``. Phases without demand are skipped when another phase
    is waiting.
    """
    mode = ControllerMode.ACTUATED

    def __init__(self, intersection_id: str, plan: ActuatedPlan):
        super().__init__(intersection_id, plan.phases)
        self.plan = plan

    def run_tick(self, dt: float, demand: Mapping[str, bool]) -> Permissions:
        state = self.state
        state.elapsed += dt
        if state.stage == PhaseStage.GREEN:
            phase = self.phases[state.phase_index]
            if self._has_demand(state.phase_index, demand):
                state.idle = 0.0
            else:
                state.idle += dt
            # Time spent past each threshold; the earliest crossing ends the green.
            overshoots = []
            if state.elapsed >= phase.max_green - _EPS:
                overshoots.append(state.elapsed - phase.max_green)
            if (state.elapsed >= phase.min_green - _EPS
                    and state.idle >= self.plan.gap_out_timeout - _EPS):
                overshoots.append(min(state.elapsed - phase.min_green, state.idle - self.plan.gap_out_timeout))
            if overshoots:
                state.stage = PhaseStage.YELLOW
                state.elapsed = max(0.0, max(overshoots))
        self._run_clearance(demand)
        return self.permissions()

    def _next_phase(self, demand: Mapping[str, bool]) -> int:
        count = len(self.phases)
        for step in range(1, count + 1):
            index = (self.state.phase_index + step) % count
            if self._has_demand(index, demand):
                return index
        return (self.state.phase_index + 1) % count


def build_controller(intersection_id: str, plan: Union[FixedTimePlan, ActuatedPlan]) -> Controller:
    if isinstance(plan, ActuatedPlan):
        return ActuatedController(intersection_id, plan)
    return FixedTimeController(intersection_id, plan)
