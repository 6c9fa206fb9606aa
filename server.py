import logging
import os
from contextlib import asynccontextmanager
from dataclasses import asdict
from datetime import timedelta
from typing import Any, Dict, Optional

import uvicorn
from fastapi import Body, FastAPI, HTTPException, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel

from config import load_config, zones_from_config
from connectors.nominatim_source import NominatimSource
from errors import GeocodingError, ValidationError
from generator import TrafficGenerator
from geo import estimate_route, valid_coordinates
from hub import BroadcastHub
from janitor import Janitor
from simulation_controller import SimulationController
from store import StateStore

logger = logging.getLogger("server")

# --- Schemas ---

class UserCreate(BaseModel):
    username: str
    lat: float
    lng: float


class ReportCreate(BaseModel):
    type: str
    lat: float
    lng: float
    description: str = ""
    user_id: int = 1


class RouteRequest(BaseModel):
    from_lat: float
    from_lng: float
    to_lat: float
    to_lng: float


def create_app(config: Optional[Dict[str, Any]] = None, store: Optional[StateStore] = None) -> FastAPI:
    """Composition root: every collaborator is built here and owned by the app."""
    config = config or load_config()
    retention = config["retention"]
    simulation = config["simulation"]
    broadcast = config["broadcast"]
    geocoding = config["geocoding"]

    # --- Initialize System ---
    if store is None:
        store = StateStore(
            user_ttl=timedelta(seconds=retention["user_ttl_sec"]),
            report_ttl=timedelta(seconds=retention["report_ttl_sec"]),
            traffic_ttl=timedelta(seconds=retention["traffic_ttl_sec"]),
        )
    if simulation.get("seed_sample_data"):
        store.seed_sample_data()

    hub = BroadcastHub(
        store,
        queue_size=broadcast.get("queue_size", 0),
        send_timeout=broadcast.get("send_timeout_sec", 5.0),
    )
    sim_controller = SimulationController(
        store,
        TrafficGenerator(zones_from_config(config)),
        tick_interval=simulation.get("tick_interval_sec", 30),
        on_tick=hub.broadcast_stats,
    )
    janitor = Janitor(
        store,
        sweep_interval=retention.get("sweep_interval_sec", 3600),
        on_sweep=hub.broadcast_stats,
    )
    geocoder = NominatimSource(
        base_url=geocoding["base_url"],
        user_agent=geocoding["user_agent"],
        rate_limit=geocoding.get("rate_limit_sec", 1.0),
        timeout=geocoding.get("timeout_sec", 10.0),
        cache_ttl=geocoding.get("cache_ttl_sec", 300.0),
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await hub.start()
        if simulation.get("enabled", True):
            sim_controller.start()
        janitor.start()
        try:
            yield
        finally:
            sim_controller.stop()
            janitor.stop()
            await hub.stop()

    # --- API Layer ---
    app = FastAPI(title="RoadWatch API", version="1.0", lifespan=lifespan)
    app.state.config = config
    app.state.store = store
    app.state.hub = hub
    app.state.sim_controller = sim_controller
    app.state.janitor = janitor
    app.state.geocoder = geocoder

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/status")
    def get_service_status():
        return {
            "status": "Online",
            "sim_status": "RUNNING" if sim_controller.running and not sim_controller.paused else "PAUSED",
            "sim_ticks": sim_controller.ticks,
            "subscribers": hub.subscriber_count,
        }

    # --- SIMULATION CONTROLS ---

    @app.post("/sim/control")
    def control_sim(action: str = Body(..., embed=True)):
        """
        Control the traffic simulator.
        Action: PAUSE, RESUME, STEP
        """
        action = action.upper()
        if action == "PAUSE":
            sim_controller.pause()
        elif action == "RESUME" or action == "PLAY":
            sim_controller.resume()
        elif action == "STEP":
            sim_controller.step()
        else:
            raise HTTPException(status_code=400, detail="Invalid action")

        return {"status": "OK", "paused": sim_controller.paused, "ticks": sim_controller.ticks}

    # --- USER API ---

    @app.post("/api/users")
    def create_user(req: UserCreate):
        try:
            user = store.create_user(req.username, req.lat, req.lng)
        except ValidationError as e:
            raise HTTPException(status_code=400, detail=str(e))
        hub.broadcast_stats()
        return user

    @app.post("/api/reports")
    def create_report(req: ReportCreate):
        try:
            report = store.create_report(req.type, req.lat, req.lng, req.description, req.user_id)
        except ValidationError as e:
            raise HTTPException(status_code=400, detail=str(e))
        hub.broadcast_new_report(report)
        return {"report": report, "reports": store.recent_reports()}

    @app.get("/api/reports")
    def get_reports():
        return {"reports": store.recent_reports()}

    @app.get("/api/stats")
    def get_stats():
        stats = asdict(store.stats())
        stats["subscribers"] = hub.subscriber_count
        return stats

    @app.get("/api/traffic")
    def get_traffic():
        return {
            "samples": store.all_traffic_samples(),
            "summary": store.traffic_summary(),
        }

    @app.post("/api/routes")
    def calculate_route(req: RouteRequest):
        coords = (req.from_lat, req.from_lng, req.to_lat, req.to_lng)
        # 0 means "not provided" for the browser form
        if any(c == 0 for c in coords):
            raise HTTPException(status_code=400, detail="Invalid coordinates")
        if not valid_coordinates(req.from_lat, req.from_lng) or not valid_coordinates(req.to_lat, req.to_lng):
            raise HTTPException(status_code=400, detail="Invalid coordinates")
        return estimate_route(*coords)

    @app.get("/api/geocode")
    def geocode(address: str = "", limit: int = 1):
        if not address.strip():
            raise HTTPException(status_code=400, detail="Parameter 'address' is required")
        try:
            return geocoder.search(address, limit=limit)
        except GeocodingError as e:
            raise HTTPException(status_code=502, detail=str(e))

    @app.get("/api/geocode/nearby")
    def geocode_nearby(lat: float, lng: float, q: str = "", radius_km: float = 5.0):
        if not q.strip():
            raise HTTPException(status_code=400, detail="Parameter 'q' is required")
        if not valid_coordinates(lat, lng) or radius_km <= 0:
            raise HTTPException(status_code=400, detail="Invalid coordinates or radius")
        try:
            return geocoder.search_nearby(lat, lng, q, radius_km)
        except GeocodingError as e:
            raise HTTPException(status_code=502, detail=str(e))

    @app.get("/api/geocode/reverse")
    def reverse_geocode(lat: float, lng: float):
        try:
            return geocoder.reverse(lat, lng)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        except GeocodingError as e:
            raise HTTPException(status_code=502, detail=str(e))

    # --- Push Channel ---

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket):
        await hub.serve(websocket)

    # --- Static Files (Frontend) ---
    # Mounted last so API routes take precedence
    static_path = config["server"].get("static_dir") or ""
    if static_path and not os.path.isabs(static_path):
        static_path = os.path.join(os.path.dirname(__file__), static_path)
    if static_path and os.path.isdir(static_path):
        logger.info("Serving frontend from %s", static_path)
        app.mount("/", StaticFiles(directory=static_path, html=True), name="static")
    else:
        logger.info("No static directory found. Frontend will not be served.")

    return app


app = create_app()

if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")
    server_cfg = app.state.config["server"]
    uvicorn.run("server:app", host=server_cfg["host"], port=server_cfg["port"])
