import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from payment_tracker import config
from payment_tracker.routes import router, stop_all

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    # Close every channel and timer still open
    await stop_all()


app = FastAPI(title="Payment Status Tracker", lifespan=lifespan)

app.include_router(router)
