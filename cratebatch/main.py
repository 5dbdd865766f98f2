"""CrateBatch HTTP service.

Run with: uvicorn cratebatch.main:app --port 5001 --reload
"""

import logging
import os
from contextlib import asynccontextmanager
from logging.handlers import RotatingFileHandler

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from cratebatch.routers import config_routes, library, playlists, tagging, upload
from cratebatch.routers._helpers import OUTPUT_DIR
from cratebatch.state import get_state, reset_state
from cratebatch.tasks import get_task_manager

load_dotenv(os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), ".env"))

LOG_FILE = os.path.join(OUTPUT_DIR, "app.log")
DEV_ORIGINS = ["http://localhost:5173", "http://localhost:5174"]

logger = logging.getLogger(__name__)


def configure_logging(path: str = LOG_FILE) -> None:
    """Everything at DEBUG and up goes to a 2 MB x 3 rotating file."""
    os.makedirs(os.path.dirname(path), exist_ok=True)
    handler = RotatingFileHandler(path, maxBytes=2_000_000, backupCount=3)
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s"))
    logging.root.addHandler(handler)
    logging.root.setLevel(logging.DEBUG)


configure_logging()


@asynccontextmanager
async def lifespan(app: FastAPI):
    get_state()
    logger.info("CrateBatch started, output in %s", OUTPUT_DIR)
    yield
    # Stops a running enrichment job before the state goes away
    await get_task_manager().shutdown()
    reset_state()
    logger.info("CrateBatch stopped")


app = FastAPI(title="CrateBatch", version="1.0.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=os.environ.get("CRATEBATCH_CORS_ORIGINS", ",".join(DEV_ORIGINS)).split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

for module in (upload, tagging, library, playlists, config_routes):
    app.include_router(module.router)


@app.get("/api/health")
async def health():
    return {"ok": True}


if __name__ == "__main__":
    import uvicorn

    print("\n  CrateBatch is running at http://localhost:5001")
    print(f"  Logging to {LOG_FILE}\n")
    uvicorn.run("cratebatch.main:app", host="127.0.0.1", port=5001, reload=True)
