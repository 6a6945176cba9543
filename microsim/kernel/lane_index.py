import math
from bisect import bisect_right
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from microsim.domain.graph import RoadNetwork
from microsim.domain.models import Vehicle

# Successor hops followed when searching for a leader beyond the lane end.
MAX_LOOKAHEAD_HOPS = 10


def _sort_key(vehicle: Vehicle) -> Tuple[float, str]:
    return vehicle.position, vehicle.id


def _discard(lane: List[Vehicle], vehicle: Vehicle):
    for slot, candidate in enumerate(lane):
        if candidate is vehicle:
            del lane[slot]
            return
    raise ValueError(f"vehicle {vehicle.id} is not indexed in this lane")


class LaneIndex:
    """Per-lane vehicle lists sorted by position (ascending).

    The canonical index is mutated only by the kernel's commit phase; every
    other caller reads it. ``with_reassignments`` builds a throwaway view with
    this tick's approved lane changes applied at their start-of-tick positions.
    """

    def __init__(self, network: RoadNetwork):
        self.network = network
        self._lanes: Dict[str, List[Vehicle]] = {lane.id: [] for lane in network.lanes()}
        self._positions: Dict[str, List[float]] = {}
        self._slots: Dict[str, int] = {}
        self._vehicles: Dict[str, Vehicle] = {}

    # Maintenance (commit phase only)

    def insert(self, vehicle: Vehicle):
        self._lanes[vehicle.lane_id].append(vehicle)
        self._vehicles[vehicle.id] = vehicle

    def remove(self, vehicle: Vehicle, lane_id: Optional[str] = None):
        _discard(self._lanes[lane_id or vehicle.lane_id], vehicle)
        del self._vehicles[vehicle.id]

    def move(self, vehicle: Vehicle, old_lane_id: str):
        _discard(self._lanes[old_lane_id], vehicle)
        self._lanes[vehicle.lane_id].append(vehicle)

    def resort(self, lane_ids: Iterable[str]):
        lane_ids = list(lane_ids)
        for lane_id in lane_ids:
            self._lanes[lane_id].sort(key=_sort_key)
        self.refresh(lane_ids)

    def refresh(self, lane_ids: Optional[Iterable[str]] = None):
        """Recompute the bisect caches and slots from committed positions."""
        for lane_id in (self._lanes.keys() if lane_ids is None else lane_ids):
            lane = self._lanes[lane_id]
            self._positions[lane_id] = [v.position for v in lane]
            for slot, vehicle in enumerate(lane):
                self._slots[vehicle.id] = slot

    def with_reassignments(self, assignments: Mapping[str, str]) -> "LaneIndex":
        view = LaneIndex.__new__(LaneIndex)
        view.network = self.network
        view._vehicles = self._vehicles
        view._lanes = {
            lane_id: [v for v in lane if v.id not in assignments] for lane_id, lane in self._lanes.items()
        }
        view._positions = {}
        view._slots = {}
        for vehicle_id in sorted(assignments):
            view._lanes[assignments[vehicle_id]].append(self._vehicles[vehicle_id])
        view.resort(view._lanes.keys())
        return view

    # Queries

    def vehicle(self, vehicle_id: str) -> Vehicle:
        return self._vehicles[vehicle_id]

    def vehicles_in(self, lane_id: str) -> Sequence[Vehicle]:
        return self._lanes[lane_id]

    def rearmost(self, lane_id: str) -> Optional[Vehicle]:
        lane = self._lanes[lane_id]
        return lane[0] if lane else None

    def canonical_order(self) -> List[Vehicle]:
        """Lane id ascending, then front-most vehicle first."""
        ordered = []
        for lane_id in sorted(self._lanes):
            ordered.extend(reversed(self._lanes[lane_id]))
        return ordered

    def leader(self, vehicle: Vehicle, lane_id: Optional[str] = None) -> Optional[Vehicle]:
        lane = self._lanes[lane_id or vehicle.lane_id]
        slot = self._slots[vehicle.id]
        return lane[slot + 1] if slot + 1 < len(lane) else None

    def follower(self, vehicle: Vehicle, lane_id: Optional[str] = None) -> Optional[Vehicle]:
        slot = self._slots[vehicle.id]
        return self._lanes[lane_id or vehicle.lane_id][slot - 1] if slot > 0 else None

    def neighbours_at(self, lane_id: str, position: float) -> Tuple[Optional[Vehicle], Optional[Vehicle]]:
        """(leader, follower) around ``position`` in another lane sharing the coordinate."""
        lane = self._lanes[lane_id]
        slot = bisect_right(self._positions[lane_id], position)
        leader = lane[slot] if slot < len(lane) else None
        follower = lane[slot - 1] if slot > 0 else None
        return leader, follower

    def leader_ahead(self, vehicle: Vehicle, lane_id: str, next_lane_id: Optional[str],
                     lookahead: float) -> Tuple[float, Optional[Vehicle]]:
        """Gap to the nearest vehicle ahead, following successor lanes past the lane end.

        The first hop uses the vehicle's chosen next lane; later hops consider
        every successor and keep the smallest gap.
        """
        leader = self.leader(vehicle, lane_id)
        if leader is not None:
            return leader.rear - vehicle.position, leader
        remaining = self.network.lane(lane_id).length - vehicle.position
        if not next_lane_id:
            return math.inf, None
        return self.leader_beyond(lane_id, remaining, lookahead, next_lane_id)

    def leader_beyond(self, lane_id: str, remaining: float, lookahead: float,
                      next_lane_id: Optional[str] = None) -> Tuple[float, Optional[Vehicle]]:
        """Nearest vehicle past the end of ``lane_id``, ``remaining`` metres ahead.

        Without ``next_lane_id`` every successor of the lane is searched.
        """
        best_gap, best = math.inf, None
        if next_lane_id:
            frontier = [(next_lane_id, remaining)]
        else:
            frontier = [(s, remaining) for s in self.network.successors(lane_id)]
        for _ in range(MAX_LOOKAHEAD_HOPS):
            if not frontier:
                break
            expanded = []
            for candidate_id, offset in frontier:
                if offset > lookahead:
                    continue
                rearmost = self.rearmost(candidate_id)
                if rearmost is not None:
                    gap = offset + rearmost.rear
                    if gap < best_gap:
                        best_gap, best = gap, rearmost
                    continue
                length = self.network.lane(candidate_id).length
                expanded.extend((s, offset + length) for s in self.network.successors(candidate_id))
            frontier = expanded
        return best_gap, best
