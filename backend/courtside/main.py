import logging
import os

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from courtside.database import init_db
from courtside.routes import matches, playoffs, pools, schedule, scoreboards, standings, teams, tournaments

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

APP_NAME = "Courtside Tournament Engine API"

app = FastAPI(title=APP_NAME)

_cors_origins = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]
_extra = os.getenv("CORS_ORIGINS", "")
if _extra:
    _cors_origins.extend(o.strip() for o in _extra.split(",") if o.strip())

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(tournaments.router, prefix="/api", tags=["tournaments"])
app.include_router(teams.router, prefix="/api", tags=["teams"])
app.include_router(pools.router, prefix="/api", tags=["pools"])
app.include_router(schedule.router, prefix="/api", tags=["schedule"])

# Match lifecycle (status, finalize/unfinalize, refs) and the scoring device
app.include_router(matches.router, prefix="/api", tags=["matches"])
app.include_router(scoreboards.router, prefix="/api", tags=["scoreboards"])

app.include_router(standings.router, prefix="/api", tags=["standings"])
app.include_router(playoffs.router, prefix="/api", tags=["playoffs"])


@app.on_event("startup")
def on_startup():
    init_db()
    logger.info("%s started with %d routes", APP_NAME, len(app.routes))


@app.get("/api/health")
def health_check():
    return {"app_name": APP_NAME, "status": "healthy"}
