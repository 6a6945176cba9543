import asyncio
import logging
import os
import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from microsim.kernel.commands import RemoveVehicleCommand, SpawnVehicleCommand
from microsim.kernel.simulation_kernel import SimulationKernel
from microsim.domain.models import IntersectionSnapshot, SpawnRequest, StepRequest, WorldSnapshot
from microsim.scenarios import demo_config, signalized_crossroads

log = logging.getLogger(__name__)


def _autorun_enabled() -> bool:
    return os.environ.get("MICROSIM_AUTORUN", "").lower() in ("1", "true", "yes")


def create_app(kernel: Optional[SimulationKernel] = None, autorun: Optional[bool] = None) -> FastAPI:
    """HTTP polling surface over one kernel.

    With ``autorun`` the kernel ticks in a background task at wall-clock pace;
    otherwise it only advances through ``POST /api/world/step``.
    """
    kernel = kernel or SimulationKernel(signalized_crossroads(), demo_config())
    autorun = _autorun_enabled() if autorun is None else autorun

    async def run_simulation():
        """Runs the simulation update loop at real time"""
        while True:
            start_time = time.time()
            kernel.run_tick()
            elapsed = time.time() - start_time
            await asyncio.sleep(max(0.0, kernel.dt - elapsed))

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        loop_task = asyncio.create_task(run_simulation()) if autorun else None
        log.info("HTTP host started (autorun=%s)", autorun)
        yield
        if loop_task:
            loop_task.cancel()

    app = FastAPI(lifespan=lifespan)
    app.state.kernel = kernel

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/")
    def read_root():
        return {
            "status": "microsim running",
            "tick": kernel.state.tick_id,
            "autorun": autorun,
            "queued": len(kernel.command_queue),
        }

    @app.get("/api/world/snapshot", response_model=WorldSnapshot)
    async def get_snapshot():
        """Returns the last committed world state"""
        return kernel.get_snapshot()

    @app.post("/api/world/step", response_model=WorldSnapshot)
    async def step_world(request: StepRequest):
        """Advances the simulation by up to 1000 ticks; blocks until they are done"""
        return kernel.run(request.ticks)

    @app.get("/api/intersections/{intersection_id}", response_model=IntersectionSnapshot)
    async def get_intersection(intersection_id: str):
        details = kernel.get_intersection_details(intersection_id)
        if not details:
            raise HTTPException(status_code=404, detail="Intersection not found")
        return details

    @app.post("/api/vehicles", status_code=202)
    async def spawn_vehicle(request: SpawnRequest):
        """Queues a spawn; it takes effect at the start of the next tick"""
        if not kernel.network.has_lane(request.lane_id):
            raise HTTPException(status_code=404, detail="Lane not found")
        if request.driver_class not in kernel.config.driver_classes:
            raise HTTPException(status_code=422, detail="Unknown driver class")
        if request.id is not None and request.id in kernel.state.vehicles:
            raise HTTPException(status_code=409, detail="Vehicle id already in use")
        kernel.queue_command(SpawnVehicleCommand(request))
        return {"status": "queued", "laneId": request.lane_id}

    @app.delete("/api/vehicles/{vehicle_id}", status_code=202)
    async def remove_vehicle(vehicle_id: str):
        if vehicle_id not in kernel.state.vehicles:
            raise HTTPException(status_code=404, detail="Vehicle not found")
        kernel.queue_command(RemoveVehicleCommand(vehicle_id))
        return {"status": "queued", "id": vehicle_id}

    return app


app = create_app()
