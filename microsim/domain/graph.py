import itertools
from typing import Any, Dict, FrozenSet, List, Optional, Tuple

import networkx as nx

from microsim.domain.errors import ConfigurationError
from microsim.domain.models import IntersectionSpec, Lane, Movement


class RoadNetwork:
    """Read-only lane graph supplied by the geometry provider.

    Nodes are lanes; an edge ``u -> v`` means a vehicle leaving the end of
    ``u`` enters ``v`` at position 0. Edges that cross an intersection carry
    the movement id.
    """

    def __init__(self):
        self.graph = nx.DiGraph()
        self.intersections: Dict[str, IntersectionSpec] = {}
        self._movements: Dict[str, Movement] = {}
        self._movement_owner: Dict[str, str] = {}
        self._conflicts: Dict[str, FrozenSet[str]] = {}
        self._successors: Dict[str, Tuple[str, ...]] = {}
        self._frozen = False

    # Construction

    def add_lane(self, lane: Lane):
        self._check_mutable()
        if lane.id in self.graph:
            raise ConfigurationError(f"duplicate lane {lane.id!r}")
        self.graph.add_node(lane.id, lane=lane)

    def connect(self, from_lane: str, to_lane: str):
        self._check_mutable()
        for lane_id in (from_lane, to_lane):
            if lane_id not in self.graph:
                raise ConfigurationError(f"connection references unknown lane {lane_id!r}")
        self.graph.add_edge(from_lane, to_lane, movement=None)

    def add_intersection(self, spec: IntersectionSpec):
        self._check_mutable()
        if spec.id in self.intersections:
            raise ConfigurationError(f"duplicate intersection {spec.id!r}")
        for movement in spec.movements:
            if movement.id in self._movements:
                raise ConfigurationError(f"duplicate movement {movement.id!r}")
            for lane_id in (movement.from_lane, movement.to_lane):
                if lane_id not in self.graph:
                    raise ConfigurationError(f"movement {movement.id} references unknown lane {lane_id!r}")
            if self.graph.has_edge(movement.from_lane, movement.to_lane):
                raise ConfigurationError(f"lanes {movement.from_lane} -> {movement.to_lane} are already connected")
            self._movements[movement.id] = movement
            self._movement_owner[movement.id] = spec.id
            self.graph.add_edge(movement.from_lane, movement.to_lane, movement=movement.id)
        for group in spec.conflicts:
            for movement_id in group:
                if self._movement_owner.get(movement_id) != spec.id:
                    raise ConfigurationError(f"conflict group in {spec.id} references unknown movement {movement_id!r}")
        self.intersections[spec.id] = spec

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RoadNetwork":
        network = cls()
        for lane in data.get("lanes", []):
            network.add_lane(Lane.model_validate(lane))
        for from_lane, to_lane in data.get("connections", []):
            network.connect(from_lane, to_lane)
        for spec in data.get("intersections", []):
            network.add_intersection(IntersectionSpec.model_validate(spec))
        return network.validate()

    def validate(self) -> "RoadNetwork":
        for lane in self.lanes():
            for side, neighbour_id in (("left", lane.left), ("right", lane.right)):
                if neighbour_id is None:
                    continue
                if neighbour_id not in self.graph:
                    raise ConfigurationError(f"lane {lane.id} {side} neighbour {neighbour_id!r} does not exist")
                neighbour = self.lane(neighbour_id)
                back = neighbour.right if side == "left" else neighbour.left
                if back != lane.id:
                    raise ConfigurationError(f"adjacency between {lane.id} and {neighbour_id} is not symmetric")
                if neighbour.length != lane.length:
                    raise ConfigurationError(f"adjacent lanes {lane.id} and {neighbour_id} differ in length")

        conflicts: Dict[str, set] = {m: set() for m in self._movements}
        for spec in self.intersections.values():
            for group in spec.conflicts:
                for a, b in itertools.combinations(group, 2):
                    if a != b:
                        conflicts[a].add(b)
                        conflicts[b].add(a)
        self._conflicts = {m: frozenset(c) for m, c in conflicts.items()}
        self._successors = {
            lane_id: tuple(sorted(self.graph.successors(lane_id))) for lane_id in self.graph.nodes
        }
        self._frozen = True
        return self

    @property
    def validated(self) -> bool:
        return self._frozen

    def _check_mutable(self):
        if self._frozen:
            raise ConfigurationError("road network is read-only after validation")

    # Queries

    def lane(self, lane_id: str) -> Lane:
        try:
            return self.graph.nodes[lane_id]["lane"]
        except KeyError:
            raise ConfigurationError(f"unknown lane {lane_id!r}") from None

    def has_lane(self, lane_id: str) -> bool:
        return lane_id in self.graph

    def lanes(self) -> List[Lane]:
        return [self.graph.nodes[n]["lane"] for n in sorted(self.graph.nodes)]

    def successors(self, lane_id: str) -> Tuple[str, ...]:
        if lane_id in self._successors:
            return self._successors[lane_id]
        return tuple(sorted(self.graph.successors(lane_id)))

    def movement_between(self, from_lane: str, to_lane: Optional[str]) -> Optional[Movement]:
        if to_lane is None or not self.graph.has_edge(from_lane, to_lane):
            return None
        movement_id = self.graph.edges[from_lane, to_lane]["movement"]
        return self._movements.get(movement_id) if movement_id else None

    def movement(self, movement_id: str) -> Movement:
        return self._movements[movement_id]

    def intersection_of(self, movement_id: str) -> str:
        return self._movement_owner[movement_id]

    def conflicting(self, movement_id: str) -> FrozenSet[str]:
        return self._conflicts.get(movement_id, frozenset())

    def entry_lanes(self) -> List[str]:
        """Lanes with no predecessors (sources)."""
        return sorted(n for n in self.graph.nodes if self.graph.in_degree(n) == 0)
