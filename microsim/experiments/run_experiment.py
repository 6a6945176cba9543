import json
import logging
import sys
import time
from pathlib import Path
from typing import Any, Dict, List, Optional

from microsim.domain.graph import RoadNetwork
from microsim.domain.models import SimulationConfig, Vehicle
from microsim.kernel.simulation_kernel import SimulationKernel
from microsim.logging_setup import setup_logging

log = logging.getLogger(__name__)

DEFAULT_TICKS = 100


def load_scenario(path: str) -> Dict[str, Any]:
    """Scenario file: ``{"network": ..., "config": ... or "config.json", "vehicles": [...], "ticks": n}``."""
    return json.loads(Path(path).read_text())


def build_kernel(scenario: Dict[str, Any], base_dir: Optional[Path] = None) -> SimulationKernel:
    """``config`` is either inline or a path to a config file, relative to ``base_dir``."""
    network = RoadNetwork.from_dict(scenario["network"])
    config = scenario.get("config", {})
    if isinstance(config, str):
        config = SimulationConfig.from_file(Path(base_dir or ".") / config)
    else:
        config = SimulationConfig.model_validate(config)
    vehicles = []
    for data in scenario.get("vehicles", []):
        data = dict(data)
        driver_class = data.setdefault("driver_class", "default")
        data.setdefault("driver", config.driver_classes[driver_class])
        vehicles.append(Vehicle.model_validate(data))
    return SimulationKernel(network, config, vehicles)


def run_headless_experiment(scenario_path: str, output_path: str, ticks: Optional[int] = None) -> List[dict]:
    scenario = load_scenario(scenario_path)
    duration_ticks = ticks if ticks is not None else scenario.get("ticks", DEFAULT_TICKS)
    kernel = build_kernel(scenario, Path(scenario_path).parent)

    results = []
    start_time = time.time()
    for _ in range(duration_ticks):
        kernel.run_tick()
        snapshot = kernel.get_snapshot()
        speeds = [v.velocity for v in snapshot.vehicles]
        results.append({
            "tick": snapshot.tick,
            "time": snapshot.time,
            "vehicle_count": len(speeds),
            "mean_speed": sum(speeds) / len(speeds) if speeds else 0.0,
            "signals": {i.id: i.green for i in snapshot.intersections},
        })
    log.info("Experiment finished in %.4fs (%d ticks)", time.time() - start_time, duration_ticks)

    output = {"ticks": results, "stats": kernel.state.stats.model_dump()}
    with open(output_path, "w") as f:
        json.dump(output, f, indent=2)
    return results


if __name__ == "__main__":
    setup_logging()
    if len(sys.argv) > 2:
        run_headless_experiment(sys.argv[1], sys.argv[2], int(sys.argv[3]) if len(sys.argv) > 3 else None)
    else:
        print("Usage: python -m microsim.experiments.run_experiment <scenario.json> <output.json> [ticks]")
