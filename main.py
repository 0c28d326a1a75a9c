from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager, suppress
import uvicorn
from datetime import datetime
import asyncio
import logging
import pytz

import config
from routes import auth, boards, control, overlay
from database import database, init_db, sync_channel
from services.change_relay import ChangeStreamRelay

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    await init_db()

    relay_task = None
    if config.CHANGE_STREAMS_ENABLED:
        relay_task = asyncio.create_task(ChangeStreamRelay(database, sync_channel).run())
        logger.info("Change stream relay started")

    yield

    # Shutdown
    if relay_task is not None:
        relay_task.cancel()
        with suppress(asyncio.CancelledError):
            await relay_task


app = FastAPI(
    title="Kuji Board API",
    description="Live-stream prize draw boards with a control room and a broadcast overlay",
    version="1.0.0",
    lifespan=lifespan
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(auth.router, prefix="/api/v1/auth", tags=["Authentication"])
app.include_router(boards.router, prefix="/api/v1/boards", tags=["Boards"])
app.include_router(control.router, prefix="/api/v1", tags=["Control Room"])
app.include_router(control.socket_router, tags=["Control Room"])
app.include_router(overlay.router, tags=["Overlay"])


@app.get("/health")
async def health_check():
    return {"status": "healthy", "timestamp": datetime.now(pytz.UTC)}


if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host=config.HOST,
        port=config.PORT,
        reload=True
    )
