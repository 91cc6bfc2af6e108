import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from foundation_api.auth import router as auth_router
from foundation_api.config import settings
from foundation_api.db import engine
from foundation_api.donations import router as donation_router
from foundation_api.errors import FoundationError, foundation_error_handler
from foundation_api.events import router as event_router
from foundation_api.gallery import router as gallery_router
from foundation_api.membership import router as membership_router
from foundation_api.models import Base
from foundation_api.openapi_schemas import openapi_tags
from foundation_api.reports import router as report_router
from foundation_api.users import router as user_router

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    Base.metadata.create_all(bind=engine)
    yield


app = FastAPI(
    title="Foundation API",
    description="REST API for users, events, donations (with M-PESA), gallery and paid memberships.",
    version="0.1.0",
    openapi_tags=openapi_tags,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_exception_handler(FoundationError, foundation_error_handler)

# Mount authentication endpoints
app.include_router(auth_router)
app.include_router(user_router)
app.include_router(event_router)
app.include_router(donation_router)
app.include_router(gallery_router)
# Mount membership lifecycle endpoints
app.include_router(membership_router)
app.include_router(report_router)


@app.get("/", tags=["Misc"])
def health_check():
    """Health check endpoint for system uptime monitoring."""
    return {"message": "Healthy", "environment": settings.ENVIRONMENT}
