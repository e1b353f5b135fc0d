import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from config import settings

logging.basicConfig(level=logging.DEBUG if settings.debug else logging.INFO)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("HentaIto Online backend starting up...")
    yield
    from services.session_registry import session_registry
    session_registry.close_all()
    logger.info("Backend shutting down.")


app = FastAPI(
    title="HentaIto Online",
    version="0.1.0",
    description="Multiplayer number-guessing party game — local and networked rooms",
    lifespan=lifespan,
)

_origins = list(settings.allowed_origins)
if settings.extra_origin:
    _origins.append(settings.extra_origin)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
)


@app.get("/health")
async def health_check():
    return {"status": "ok", "service": "hentaito-online", "version": "0.1.0"}


from routers.room_router import router as room_router
from routers.ws_router import router as ws_router

app.include_router(room_router, prefix="/api")
app.include_router(ws_router)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)
