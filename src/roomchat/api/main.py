from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import UTC, datetime
from dotenv import load_dotenv
import logging
from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import CONTENT_TYPE_LATEST, REGISTRY, generate_latest

from .routers.chat import router as chat_router
from .routers.rooms import router as rooms_router
from ..infrastructure.gateway import get_gateway
from ..observability.metrics import metrics_middleware_factory

load_dotenv()  # Load environment variables from .env if present (OPENAI_API_KEY, GEMINI_API_KEY, etc.)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    gateway = get_gateway()
    await gateway.initialize()
    yield
    gateway.close()


app = FastAPI(title="Roomchat API", version="0.1.0", lifespan=lifespan)

# Observability: request latency histogram
app.middleware("http")(metrics_middleware_factory())

# Routers
app.include_router(chat_router)
app.include_router(rooms_router)

# Also expose the same routers under /api for browser clients behind a proxy
app.include_router(chat_router, prefix="/api")
app.include_router(rooms_router, prefix="/api")

# CORS (for the web client dev server on localhost:3000)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://127.0.0.1:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _database_status() -> str:
    try:
        get_gateway()
        return "ok"
    except Exception as exc:
        logger.warning("health_database_unavailable", extra={"err": str(exc)})
        return "unavailable"


@app.get("/")
def root():
    return {"name": "Roomchat API", "version": "0.1.0"}


@app.get("/health")
def health():
    return {
        "status": "ok",
        "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
        "components": {
            "api": "ok",
            "database": _database_status(),
        },
    }


@app.get("/metrics")
def metrics() -> Response:
    # Expose Prometheus metrics
    data = generate_latest(REGISTRY)
    return Response(content=data, media_type=CONTENT_TYPE_LATEST)
