import random
from typing import Dict, List

from pydantic import BaseModel, ConfigDict, Field

from microsim.domain.models import SimulationStats, Vehicle


class SimulationState(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    tick_id: int = 0
    time: float = 0.0
    vehicles: Dict[str, Vehicle] = {}
    rng: random.Random = Field(default_factory=random.Random)

    # Counters that survive across ticks
    next_vehicle_seq: int = 0
    arrival_counters: Dict[str, int] = {}
    spawn_timers: List[float] = []
    stats: SimulationStats = Field(default_factory=SimulationStats)
