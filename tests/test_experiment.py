import json
import tempfile
import unittest
from pathlib import Path

from microsim.experiments.run_experiment import build_kernel, run_headless_experiment

NETWORK = {"lanes": [{"id": "road", "length": 500}], "connections": []}
VEHICLES = [{"id": "a", "lane_id": "road", "position": 10.0, "velocity": 5.0}]


class TestHeadlessExperiment(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)
        self.root = Path(self.tmp.name)

    def write(self, name, data):
        path = self.root / name
        path.write_text(json.dumps(data))
        return path

    def test_inline_config(self):
        kernel = build_kernel({"network": NETWORK, "config": {"dt": 0.5}, "vehicles": VEHICLES})
        self.assertEqual(kernel.dt, 0.5)
        self.assertEqual(list(kernel.state.vehicles), ["a"])

    def test_config_file_is_resolved_next_to_the_scenario(self):
        self.write("config.json", {"dt": 0.5, "seed": 7})
        scenario = self.write("scenario.json", {"network": NETWORK, "config": "config.json", "vehicles": VEHICLES})
        output = self.root / "out.json"

        results = run_headless_experiment(str(scenario), str(output), ticks=4)

        self.assertEqual(len(results), 4)
        self.assertAlmostEqual(results[-1]["time"], 2.0)
        self.assertEqual(results[-1]["vehicle_count"], 1)
        written = json.loads(output.read_text())
        self.assertEqual(len(written["ticks"]), 4)
        self.assertEqual(written["stats"]["invariant_violations"], 0)


if __name__ == '__main__':
    unittest.main()
