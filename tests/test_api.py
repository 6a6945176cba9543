import unittest

from fastapi.testclient import TestClient

from microsim.domain.models import SimulationConfig
from microsim.kernel.simulation_kernel import SimulationKernel
from microsim.main import create_app
from microsim.scenarios import signalized_crossroads, two_phase_plan


class TestApi(unittest.TestCase):
    def setUp(self):
        self.kernel = SimulationKernel(signalized_crossroads(), SimulationConfig(signal_plans={"X1": two_phase_plan()}))
        self.client = TestClient(create_app(self.kernel, autorun=False))

    def test_root(self):
        response = self.client.get("/")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["tick"], 0)

    def test_step_and_snapshot(self):
        response = self.client.post("/api/world/step", json={"ticks": 10})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["tick"], 10)
        snapshot = self.client.get("/api/world/snapshot").json()
        self.assertEqual(snapshot["tick"], 10)
        self.assertAlmostEqual(snapshot["time"], 1.0)
        self.assertEqual(snapshot["intersections"][0]["id"], "X1")

    def test_step_rejects_negative_ticks(self):
        self.assertEqual(self.client.post("/api/world/step", json={"ticks": -1}).status_code, 422)

    def test_step_is_capped(self):
        self.assertEqual(self.client.post("/api/world/step", json={"ticks": 1001}).status_code, 422)
        self.assertEqual(self.kernel.state.tick_id, 0)

    def test_intersection_details(self):
        response = self.client.get("/api/intersections/X1")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["mode"], "fixed")
        self.assertEqual(response.json()["green"], ["N_S", "S_N"])
        self.assertEqual(self.client.get("/api/intersections/nope").status_code, 404)

    def test_spawn_and_remove_are_queued(self):
        response = self.client.post("/api/vehicles", json={"lane_id": "N_in", "position": 10.0, "id": "api-1"})
        self.assertEqual(response.status_code, 202)
        self.assertNotIn("api-1", self.kernel.state.vehicles)
        self.assertEqual(self.client.get("/").json()["queued"], 1)

        snapshot = self.client.post("/api/world/step", json={"ticks": 1}).json()
        self.assertEqual([v["id"] for v in snapshot["vehicles"]], ["api-1"])
        self.assertEqual(self.client.get("/").json()["queued"], 0)

        self.assertEqual(self.client.post("/api/vehicles", json={"lane_id": "N_in", "id": "api-1"}).status_code, 409)
        self.assertEqual(self.client.delete("/api/vehicles/api-1").status_code, 202)
        snapshot = self.client.post("/api/world/step", json={"ticks": 1}).json()
        self.assertEqual(snapshot["vehicles"], [])

    def test_spawn_validation(self):
        self.assertEqual(self.client.post("/api/vehicles", json={"lane_id": "nowhere"}).status_code, 404)
        response = self.client.post("/api/vehicles", json={"lane_id": "N_in", "driver_class": "truck"})
        self.assertEqual(response.status_code, 422)
        self.assertEqual(self.client.delete("/api/vehicles/ghost").status_code, 404)


if __name__ == '__main__':
    unittest.main()
