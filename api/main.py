import logging
import os
from contextlib import asynccontextmanager

from database import init_db
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from playback import PlaybackGraph
from player import STATION_USER_ID, Player, station_authorize
from playout import start_playout, stop_playout
from recorder import PlayEventRecorder
from routers import admin, player, plays, reports, status, submit
from worker import reset_stuck_jobs, start_worker, stop_worker

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(name)s %(levelname)s %(message)s",
)
logger = logging.getLogger(__name__)


def build_player() -> Player:
    graph = PlaybackGraph(authorize=station_authorize)
    recorder = PlayEventRecorder(user_id=STATION_USER_ID)
    return Player(graph, recorder)


@asynccontextmanager
async def lifespan(app: FastAPI):
    _station_name = os.getenv("STATION_NAME", "Studio Radio")
    logger.info("Starting up %s API", _station_name)
    init_db()
    reset_stuck_jobs()
    start_worker()
    start_playout(app.state.player)
    yield
    logger.info("Shutting down %s API", _station_name)
    stop_playout()
    stop_worker()
    app.state.player.close()


app = FastAPI(title=os.getenv("STATION_NAME", "Studio Radio") + " API", lifespan=lifespan)
app.state.player = build_player()

_hostname = os.environ.get("SERVER_HOSTNAME", "")
_origins = [f"https://{_hostname}"] if _hostname else ["http://localhost", "http://localhost:8000"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=_origins,
    allow_methods=["GET", "POST", "DELETE"],
    allow_headers=["Content-Type", "X-Admin-Token"],
)

app.include_router(submit.router)
app.include_router(status.router)
app.include_router(player.router)
app.include_router(plays.router)
app.include_router(reports.router)
app.include_router(admin.router)


@app.get("/health")
def health():
    return {"ok": True}
