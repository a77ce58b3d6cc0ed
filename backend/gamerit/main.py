"""Gamerit: FastAPI Application Entry Point."""

import logging
import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from gamerit import __version__
from gamerit.config import settings
from gamerit.database import init_db
from gamerit.exceptions import AuthError, TransportError
from gamerit.middleware.rate_limit import limiter
from gamerit.routers import auth, bets, market, players, rounds
from gamerit.scheduler import start_scheduler, stop_scheduler

logger = logging.getLogger(__name__)


def setup_logging(log_level: str = None, log_file: str = None) -> None:
    """Configure root logging: stdout plus an optional file."""
    level = getattr(logging, (log_level or settings.LOG_LEVEL).upper(), logging.INFO)
    handlers = [logging.StreamHandler(sys.stdout)]
    log_file = log_file or settings.LOG_FILE
    if log_file:
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=handlers,
        force=True,
    )
    # Reduce noise from third-party libraries
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("apscheduler").setLevel(logging.WARNING)


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    init_db()
    if settings.SCHEDULER_ENABLED:
        start_scheduler()
    else:
        logger.info("Scheduler disabled; jobs run only via admin triggers")
    yield
    if settings.SCHEDULER_ENABLED:
        stop_scheduler(wait=False)


# ── CORS origins from env ───────────────────────────────────────────────────
_cors_origins = settings.split(settings.ALLOWED_ORIGINS)

app = FastAPI(
    title="Gamerit",
    description="Karma Chips betting rounds and meme stock market on live Reddit data.",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# Rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Routers
app.include_router(auth.router)
app.include_router(players.router)
app.include_router(rounds.router)
app.include_router(bets.router)
app.include_router(market.router)


@app.exception_handler(AuthError)
async def reddit_auth_error(request: Request, exc: AuthError):
    logger.error(f"Reddit authentication failed during {request.url.path}: {exc}")
    return JSONResponse(status_code=503, content={"detail": "Reddit is not available right now"})


@app.exception_handler(TransportError)
async def reddit_transport_error(request: Request, exc: TransportError):
    logger.error(f"Reddit request failed during {request.url.path}: {exc}")
    return JSONResponse(status_code=502, content={"detail": "Reddit request failed, try again shortly"})


@app.get("/")
def root():
    return {"name": "Gamerit API", "version": __version__, "docs": "/docs"}


@app.get("/health")
def health():
    return {"status": "ok"}
