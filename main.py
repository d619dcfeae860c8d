from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlmodel import SQLModel
import models.offline_clock  # Ensure this model is known by SQLModel for table creation
from db.session import engine
from contextlib import asynccontextmanager
from api.time_routes import router as time_router
from api.offline_queue_routes import router as offline_queue_router
from core.deps import ControllerRegistry
from core.settings import DEV_DOMAIN, LOG_LEVEL, PRODUCTION_DOMAIN
import logging

# Configure logging
logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logging.getLogger('sqlalchemy.engine').setLevel(logging.WARNING)

logger = logging.getLogger(__name__)

# This file is the control center of the whole application

# Construct the list of allowed origins, always including both dev and production
allowed_origins_list = [
    DEV_DOMAIN,
    PRODUCTION_DOMAIN,
    "http://127.0.0.1:5173",  # Additional fallback for Vite dev
]

# Remove any empty values and duplicates
allowed_origins_list = list(set([origin for origin in allowed_origins_list if origin]))

logger.info(f"CORS: Allowing origins: {allowed_origins_list}")


# When We Start, Create the DB Tables if they don't exist
@asynccontextmanager
async def lifespan(app: FastAPI):

    SQLModel.metadata.create_all(engine)
    app.state.registry = ControllerRegistry()

    yield

    # Stop location watches and close HTTP clients
    await app.state.registry.close()


# Starts Fast API Up; Init
app = FastAPI(lifespan=lifespan)

# Allow requests from the employee web app
app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Connects Routes From Time_Routes (clock-in / out) to main app
app.include_router(time_router, prefix="/time", tags=["Time"])
app.include_router(offline_queue_router, prefix="/time/offline-queue", tags=["Time", "Offline Queue"])
