from fastapi import FastAPI
from loguru import logger

from app.api.router import api_router
from app.core.config import APP_ENV, CHANGE_FEED, LOCATION_STORE
from app.core.init_db import init_db
from app.core.logging import setup_logging

setup_logging()
logger.info(f"Starting CrewMap backend | env={APP_ENV} store={LOCATION_STORE} feed={CHANGE_FEED}")

app = FastAPI(title="CrewMap Backend", version="0.1.0")

# grid, productions/location, maps and the live websocket
app.include_router(api_router)

# the supabase store owns its schema
if LOCATION_STORE == "sql":
    init_db()


@app.get("/health")
def health():
    logger.debug("Health check hit")
    return {"status": "ok"}
