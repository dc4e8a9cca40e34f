import logging
import os

from fastapi import FastAPI

from storyquest.api.routes import router

app = FastAPI(title="storyquest", version="0.1.0")
app.include_router(router)
# Configure logging
logging.basicConfig(level=os.environ.get("STORYQUEST_LOG_LEVEL", "INFO").upper())
logger = logging.getLogger(__name__)


@app.get("/info")
async def info() -> dict[str, str]:
    return {"name": "storyquest", "version": "0.1.0"}
