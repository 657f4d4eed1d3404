import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, APIRouter
from fastapi.middleware.cors import CORSMiddleware

from langlog_server.api_service.core.settings import settings
from langlog_server.api_service.api_v1.deps import get_job_publisher
from langlog_server.api_service.api_v1.endpoints import activities, content_labels, events, policies
from langlog_server.processing_service.db_session import check_db_connection

# Configure logging
logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logging.getLogger("pika").setLevel(logging.WARNING)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info("Starting up LangLog API Service...")
    if not check_db_connection():
        logger.warning("Database is not reachable yet; requests will fail until it is.")

    yield

    # Shutdown
    logger.info("Shutting down LangLog API Service...")
    publisher = get_job_publisher()
    if hasattr(publisher, "close"):
        publisher.close()


app = FastAPI(
    title=settings.PROJECT_NAME,
    description="Records language-learning content events and turns them into timed, XP-earning activities.",
    version=settings.VERSION,
    openapi_url=f"{settings.API_V1_STR}/openapi.json",
    docs_url=f"{settings.API_V1_STR}/docs",
    redoc_url=f"{settings.API_V1_STR}/redoc",
    lifespan=lifespan
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Create API v1 router
api_v1_router = APIRouter(prefix=settings.API_V1_STR)

api_v1_router.include_router(events.router, prefix="/events", tags=["Events"])
api_v1_router.include_router(content_labels.router, prefix="/content-labels", tags=["Content Labels"])
api_v1_router.include_router(policies.router, prefix="/policies", tags=["Policies"])
api_v1_router.include_router(activities.router, prefix="/activities", tags=["Activities"])

app.include_router(api_v1_router)


# Health check endpoint
@app.get("/health", tags=["Health"])
async def health_check():
    return {"status": "healthy", "service": "langlog-api"}


if __name__ == "__main__":
    import uvicorn
    logger.info("Starting Uvicorn server for development...")
    uvicorn.run(app, host="0.0.0.0", port=8000, log_level="info")
