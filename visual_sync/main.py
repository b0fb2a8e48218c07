import sys
from typing import Any

import fastapi
import uvicorn

from fastapi import FastAPI
from fastapi.responses import PlainTextResponse

from visual_sync.constants import ADDON_ID
from visual_sync.dependencies import shutdown_panel_state
from visual_sync.logger import configure_logger, get_logger
from visual_sync.panel import router as panel_router

logger = get_logger()

app = FastAPI(title="Visual Tests Sync")

app.include_router(panel_router, prefix="/visual-tests", tags=["visual-tests"])


@app.get("/", response_class=PlainTextResponse)
def root() -> str:
    return "pong"


@app.get("/health")
def health() -> dict[str, Any]:
    return {
        "status": f"{ADDON_ID} is running.",
        "environment": {
            "python version": sys.version,
            "fastapi version": fastapi.__version__,
            "uvicorn version": uvicorn.__version__,
        },
    }


@app.on_event("startup")
async def _configure_logging() -> None:
    configure_logger()
    logger.info("Visual tests sync service started")


@app.on_event("shutdown")
async def _close_panel_state() -> None:
    await shutdown_panel_state()
