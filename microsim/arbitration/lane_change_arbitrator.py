from dataclasses import dataclass
from typing import Dict, List, Tuple


@dataclass(frozen=True)
class LaneChangeIntent:
    vehicle_id: str
    source_lane: str
    target_lane: str
    incentive: float
    front: float  # start-of-tick extent, shared lane coordinate
    rear: float
    order: int    # canonical processing order, for deterministic ties

    def overlaps(self, other: "LaneChangeIntent") -> bool:
        return self.rear <= other.front and other.rear <= self.front


class LaneChangeArbitrator:
    """Collects lane-change intents for one tick, then resolves conflicts.

    Intents are kept in an arena keyed by target lane. Two intents whose
    extents would overlap in the same target lane cannot both be granted; the
    lower incentive is rejected.
    """

    def __init__(self):
        self.pending: Dict[str, List[LaneChangeIntent]] = {}

    def submit(self, intent: LaneChangeIntent):
        self.pending.setdefault(intent.target_lane, []).append(intent)

    def resolve(self) -> Tuple[List[LaneChangeIntent], List[LaneChangeIntent]]:
        approved: List[LaneChangeIntent] = []
        rejected: List[LaneChangeIntent] = []
        for target_lane in sorted(self.pending):
            granted: List[LaneChangeIntent] = []
            for intent in sorted(self.pending[target_lane], key=lambda i: (-i.incentive, i.order)):
                if any(intent.overlaps(other) for other in granted):
                    rejected.append(intent)
                else:
                    granted.append(intent)
            approved.extend(granted)
        self.pending = {}
        approved.sort(key=lambda i: i.order)
        rejected.sort(key=lambda i: i.order)
        return approved, rejected
