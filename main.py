from __future__ import annotations

import logging

from fastapi import FastAPI

from api import create_router
from config import LOG_LEVEL, SEED_ROOMS
from repository import ROOMS, BookingRepository, InMemoryRowStore, RetryingRowStore, VisitRepository
from services import BookingService, VisitService

logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def seed_rooms(store: InMemoryRowStore) -> None:
    store.seed(ROOMS, SEED_ROOMS)
    logger.info("Seeded %d rooms", len(SEED_ROOMS))


# Wire up dependencies: one store per application, retry wrapped around it
_store = InMemoryRowStore()
seed_rooms(_store)
_rows = RetryingRowStore(_store)
_service = BookingService(BookingRepository(_rows))
_visits = VisitService(VisitRepository(_rows), _service)

app = FastAPI(title="Room Booking API", version="1.0.0")
app.include_router(create_router(_service, _visits))
