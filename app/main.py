from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.v1.api import api_router
from app.core.config import settings
from app.core.error_handling import install_error_handling
from app.core.logging import configure_logging, get_logger
from app.db.session import init_db
from app.services.notifications import bus, register_default_subscribers

configure_logging()
logger = get_logger(__name__)
register_default_subscribers(bus)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    logger.info("app.started", extra={"version": settings.VERSION})
    yield


app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    openapi_url=f"{settings.API_V1_STR}/openapi.json",
    lifespan=lifespan,
)

# Set up CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # In production, specify actual origins
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

install_error_handling(app)

app.include_router(api_router, prefix=settings.API_V1_STR)
