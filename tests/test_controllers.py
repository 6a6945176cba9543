import unittest

from microsim.controllers.base import Permissions
from microsim.controllers.implementations import ActuatedController, FixedTimeController, build_controller
from microsim.domain.models import (
    ActuatedPhase, ActuatedPlan, ControllerMode, FixedPhase, FixedTimePlan, PhaseStage, SignalState
)


def three_phase_plan():
    return FixedTimePlan(phases=[
        FixedPhase(movements=[name], green=30, yellow=3, all_red=2) for name in ("m0", "m1", "m2")
    ])


def actuated_plan(phase_count=2):
    return ActuatedPlan(
        phases=[
            ActuatedPhase(movements=[f"m{i}"], min_green=5, max_green=20, yellow=3, all_red=2)
            for i in range(phase_count)
        ],
        gap_out_timeout=3,
    )


class TestFixedTimeController(unittest.TestCase):
    def run_ticks(self, controller, ticks, dt=1.0):
        for _ in range(ticks):
            controller.run_tick(dt, {})

    def test_stage_sequence(self):
        controller = FixedTimeController("X", three_phase_plan())
        self.run_ticks(controller, 29)
        self.assertEqual(controller.state.stage, PhaseStage.GREEN)
        self.run_ticks(controller, 1)
        self.assertEqual(controller.state.stage, PhaseStage.YELLOW)
        self.assertEqual(controller.permissions().indication("m0"), SignalState.YELLOW)
        self.run_ticks(controller, 3)
        self.assertEqual(controller.state.stage, PhaseStage.ALL_RED)
        self.assertEqual(controller.permissions(), Permissions())

    def test_one_phase_period_reaches_next_green(self):
        controller = FixedTimeController("X", three_phase_plan())
        self.run_ticks(controller, 35)
        self.assertEqual(controller.state.phase_index, 1)
        self.assertEqual(controller.state.stage, PhaseStage.GREEN)
        self.assertAlmostEqual(controller.state.elapsed, 0.0)

    def test_full_cycle_returns_to_first_phase(self):
        controller = FixedTimeController("X", three_phase_plan())
        self.run_ticks(controller, 105)
        self.assertEqual(controller.state.phase_index, 0)
        self.assertEqual(controller.state.stage, PhaseStage.GREEN)
        self.assertAlmostEqual(controller.state.elapsed, 0.0)
        self.assertEqual(controller.permissions().indication("m0"), SignalState.GREEN)
        self.assertEqual(controller.permissions().indication("m1"), SignalState.RED)

    def test_fractional_ticks_match_whole_ticks(self):
        coarse = FixedTimeController("X", three_phase_plan())
        fine = FixedTimeController("X", three_phase_plan())
        self.run_ticks(coarse, 70)
        self.run_ticks(fine, 700, dt=0.1)
        self.assertEqual(coarse.state.phase_index, fine.state.phase_index)
        self.assertEqual(coarse.state.stage, fine.state.stage)

    def test_zero_all_red_is_skipped(self):
        plan = FixedTimePlan(phases=[
            FixedPhase(movements=["a"], green=10, yellow=2, all_red=0),
            FixedPhase(movements=["b"], green=10, yellow=2, all_red=0),
        ])
        controller = FixedTimeController("X", plan)
        self.run_ticks(controller, 12)
        self.assertEqual(controller.state.phase_index, 1)
        self.assertEqual(controller.state.stage, PhaseStage.GREEN)

    def test_snapshot(self):
        snapshot = FixedTimeController("X", three_phase_plan()).snapshot()
        self.assertEqual(snapshot.mode, ControllerMode.FIXED)
        self.assertEqual(snapshot.green, ["m0"])
        self.assertEqual(snapshot.yellow, [])


class TestActuatedController(unittest.TestCase):
    def test_demand_extends_green_up_to_max(self):
        controller = ActuatedController("X", actuated_plan())
        for _ in range(19):
            controller.run_tick(1.0, {"m0": True})
        self.assertEqual(controller.state.stage, PhaseStage.GREEN)
        controller.run_tick(1.0, {"m0": True})
        self.assertEqual(controller.state.stage, PhaseStage.YELLOW)

    def test_gap_out_after_min_green(self):
        controller = ActuatedController("X", actuated_plan())
        for _ in range(4):
            controller.run_tick(1.0, {})
        self.assertEqual(controller.state.stage, PhaseStage.GREEN)
        controller.run_tick(1.0, {})
        self.assertEqual(controller.state.stage, PhaseStage.YELLOW)

    def test_gap_out_waits_for_idle_timeout(self):
        controller = ActuatedController("X", actuated_plan())
        for _ in range(6):
            controller.run_tick(1.0, {"m0": True})
        controller.run_tick(1.0, {})
        controller.run_tick(1.0, {})
        self.assertEqual(controller.state.stage, PhaseStage.GREEN)
        controller.run_tick(1.0, {})
        self.assertEqual(controller.state.stage, PhaseStage.YELLOW)

    def test_gap_out_carries_overshoot_into_yellow(self):
        controller = ActuatedController("X", actuated_plan())
        for _ in range(16):
            controller.run_tick(0.3, {})
        self.assertEqual(controller.state.stage, PhaseStage.GREEN)
        controller.run_tick(0.3, {})
        self.assertEqual(controller.state.stage, PhaseStage.YELLOW)
        self.assertAlmostEqual(controller.state.elapsed, 0.1)

    def test_max_out_carries_overshoot_into_yellow(self):
        controller = ActuatedController("X", actuated_plan())
        for _ in range(66):
            controller.run_tick(0.3, {"m0": True})
        self.assertEqual(controller.state.stage, PhaseStage.GREEN)
        controller.run_tick(0.3, {"m0": True})
        self.assertEqual(controller.state.stage, PhaseStage.YELLOW)
        self.assertAlmostEqual(controller.state.elapsed, 0.1)

    def test_phases_without_demand_are_skipped(self):
        controller = ActuatedController("X", actuated_plan(phase_count=3))
        demand = {"m2": True}
        for _ in range(10):
            controller.run_tick(1.0, demand)
        self.assertEqual(controller.state.phase_index, 2)
        self.assertEqual(controller.state.stage, PhaseStage.GREEN)

    def test_no_demand_anywhere_cycles_in_order(self):
        controller = ActuatedController("X", actuated_plan(phase_count=3))
        for _ in range(10):
            controller.run_tick(1.0, {})
        self.assertEqual(controller.state.phase_index, 1)

    def test_build_controller_dispatches_on_plan(self):
        self.assertIsInstance(build_controller("X", actuated_plan()), ActuatedController)
        self.assertIsInstance(build_controller("X", three_phase_plan()), FixedTimeController)


if __name__ == '__main__':
    unittest.main()
