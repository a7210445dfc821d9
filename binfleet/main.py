from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from binfleet.api.routes import router as api_router
from binfleet.api.websocket import TRIAGE_TOPIC, ConnectionManager, router as websocket_router
from binfleet.config import load_config
from binfleet.models.changes import ALL_TABLES, ChangeFeed
from binfleet.models.database import DatabaseManager, RepositoryError
from binfleet.models.schemas import ChangeEvent
from binfleet.routing.directions import StraightLineDirections
from binfleet.routing.lifecycle import InvalidTransitionError
from binfleet.routing.planner import PlanningResult, PlanningSession
from binfleet.telemetry.ingest import TelemetryIngestor
from binfleet.telemetry.normalizer import InvalidReadingError

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s - %(message)s",
)

LOGGER = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    config = load_config()
    feed = ChangeFeed()
    db = DatabaseManager(config.database.path, feed)
    db.initialize()

    ws_manager = ConnectionManager()
    loop = asyncio.get_running_loop()

    def push(message: dict, topic: str) -> None:
        asyncio.run_coroutine_threadsafe(ws_manager.broadcast(message, topic=topic), loop)

    def on_change(event: ChangeEvent) -> None:
        push({"type": "change", "data": event.model_dump(mode="json")}, event.table)

    def on_result(result: PlanningResult) -> None:
        push(
            {
                "type": "triage",
                "data": {
                    "computed_at": result.computed_at.isoformat(),
                    "due_for_pickup": sorted(result.candidates.due_for_pickup),
                    "low_fill_rate": sorted(result.candidates.low_fill_rate),
                },
            },
            TRIAGE_TOPIC,
        )

    planner = PlanningSession(config, on_result=on_result)
    planner.load(db.list_devices(registered=None), db.list_historical())
    detach_planner = planner.attach(feed)
    unsubscribe_changes = feed.subscribe(ALL_TABLES, on_change)
    LOGGER.info("Planner loaded %d devices", len(planner.result.devices))

    app.state.config = config
    app.state.db = db
    app.state.feed = feed
    app.state.ws_manager = ws_manager
    app.state.planner = planner
    app.state.ingestor = TelemetryIngestor(db)
    app.state.directions = StraightLineDirections(config.planning)

    yield

    unsubscribe_changes()
    detach_planner()
    db.close()


app = FastAPI(
    title="Bin Fleet Monitoring API",
    version="1.0.0",
    description="Telemetry, fill-rate prediction and pickup route planning for waste bins",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router)
app.include_router(websocket_router)


@app.exception_handler(InvalidTransitionError)
async def invalid_transition_handler(request: Request, exc: InvalidTransitionError) -> JSONResponse:
    return JSONResponse(status_code=409, content={"detail": str(exc), "status": exc.status, "action": exc.action})


@app.exception_handler(InvalidReadingError)
async def invalid_reading_handler(request: Request, exc: InvalidReadingError) -> JSONResponse:
    return JSONResponse(status_code=422, content={"detail": str(exc)})


@app.exception_handler(RepositoryError)
async def repository_error_handler(request: Request, exc: RepositoryError) -> JSONResponse:
    LOGGER.error("Backend write failed for %s: %s", request.url.path, exc)
    return JSONResponse(status_code=503, content={"detail": "Backend unavailable"})


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


def run() -> None:
    import uvicorn

    uvicorn.run("binfleet.main:app", host="0.0.0.0", port=8000)
