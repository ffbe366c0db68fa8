import logging
import os

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from slot_booking.database import init_db
from slot_booking.routes import availability, bookings, events, match_counts, slots

logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO").upper())
logger = logging.getLogger(__name__)

APP_NAME = "Slot Booking API"

app = FastAPI(title=APP_NAME)

_cors_origins = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]
_extra = os.getenv("CORS_ORIGINS", "")
if _extra:
    _cors_origins.extend(o.strip() for o in _extra.split(",") if o.strip())

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(events.router, prefix="/api", tags=["events"])
app.include_router(slots.router, prefix="/api", tags=["slots"])
app.include_router(availability.router, prefix="/api", tags=["availability"])
app.include_router(bookings.router, prefix="/api", tags=["bookings"])
app.include_router(match_counts.router, prefix="/api", tags=["match-counts"])


@app.on_event("startup")
def on_startup():
    init_db()  # Imports models and creates tables
    logger.info("%s started with %d routes", APP_NAME, len(app.routes))


@app.get("/api/health")
def health_check():
    return {"app_name": APP_NAME, "status": "healthy"}
