from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware

from constants import LOG_FILE, LOG_LEVEL
from logging_config import get_logger, setup_logging
from registry import RoomRegistry, get_registry
from routers.rooms import rooms_router
from routers.signaling import signaling_router
from schemas.rooms import HealthResponse

# Setup logging
setup_logging(log_level=LOG_LEVEL, log_file=LOG_FILE)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    # Resolve through overrides so tests shut down the registry they injected
    registry = app.dependency_overrides.get(get_registry, get_registry)()
    logger.info(f"Shutting down, {registry.room_count()} live room(s)")
    await registry.shutdown()


app = FastAPI(title="meshrelay", lifespan=lifespan)

# Configure CORS to allow all origins
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Allow all origins
    allow_credentials=True,
    allow_methods=["*"],  # Allow all HTTP methods
    allow_headers=["*"],  # Allow all headers
)

app.include_router(rooms_router)
app.include_router(signaling_router)


@app.get("/health", response_model=HealthResponse)
async def health(registry: RoomRegistry = Depends(get_registry)):
    return HealthResponse(status="ok", rooms=registry.room_count())


logger.info("FastAPI application initialized")
