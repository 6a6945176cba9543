import unittest

from microsim.domain.errors import ConfigurationError
from microsim.domain.graph import RoadNetwork
from microsim.domain.models import IntersectionSpec, Lane, Movement
from microsim.scenarios import merge_junction, signalized_crossroads


class TestRoadNetwork(unittest.TestCase):
    def test_crossroads_structure(self):
        network = signalized_crossroads()
        self.assertEqual(network.successors("N_in"), ("N_S",))
        self.assertEqual(network.successors("N_S"), ("S_out",))
        self.assertEqual(network.movement_between("N_in", "N_S").id, "N_S")
        self.assertIsNone(network.movement_between("N_S", "S_out"))
        self.assertEqual(network.conflicting("N_S"), frozenset({"E_W", "W_E"}))
        self.assertEqual(network.conflicting("E_W"), frozenset({"N_S", "S_N"}))
        self.assertEqual(network.intersection_of("W_E"), "X1")
        self.assertEqual(network.entry_lanes(), ["E_in", "N_in", "S_in", "W_in"])

    def test_merge_priorities(self):
        network = merge_junction()
        self.assertGreater(network.movement("main_merged").priority, network.movement("ramp_merged").priority)

    def test_from_dict(self):
        network = RoadNetwork.from_dict({
            "lanes": [{"id": "a", "length": 50}, {"id": "b", "length": 80, "speed_limit": 13.9}],
            "connections": [["a", "b"]],
        })
        self.assertTrue(network.validated)
        self.assertEqual(network.successors("a"), ("b",))
        self.assertEqual(network.lane("b").speed_limit, 13.9)

    def test_read_only_after_validation(self):
        network = merge_junction()
        with self.assertRaises(ConfigurationError):
            network.add_lane(Lane(id="extra", length=10))

    def test_asymmetric_adjacency(self):
        network = RoadNetwork()
        network.add_lane(Lane(id="a", length=100, left="b"))
        network.add_lane(Lane(id="b", length=100))
        with self.assertRaises(ConfigurationError):
            network.validate()

    def test_unequal_adjacent_lengths(self):
        network = RoadNetwork()
        network.add_lane(Lane(id="a", length=100, left="b"))
        network.add_lane(Lane(id="b", length=90, right="a"))
        with self.assertRaises(ConfigurationError):
            network.validate()

    def test_dangling_references(self):
        network = RoadNetwork()
        network.add_lane(Lane(id="a", length=100))
        with self.assertRaises(ConfigurationError):
            network.connect("a", "zzz")
        with self.assertRaises(ConfigurationError):
            network.add_intersection(IntersectionSpec(
                id="X", movements=[Movement(id="m", from_lane="a", to_lane="zzz")]))
        with self.assertRaises(ConfigurationError):
            network.lane("zzz")

    def test_bad_conflict_group(self):
        network = RoadNetwork()
        network.add_lane(Lane(id="a", length=100))
        network.add_lane(Lane(id="b", length=100))
        with self.assertRaises(ConfigurationError):
            network.add_intersection(IntersectionSpec(
                id="X", movements=[Movement(id="m", from_lane="a", to_lane="b")], conflicts=[["m", "ghost"]]))


if __name__ == '__main__':
    unittest.main()
