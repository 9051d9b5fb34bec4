from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
import uvicorn
import logging

from imagevault.cache import PresignedUrlCache
from imagevault.storage.dynamodb import AllowlistService, DynamoDBService
from imagevault.storage.s3 import S3Service
from imagevault.settings import settings
from imagevault.routers.images import router as image_router
from imagevault.routers.session import router as session_router
from imagevault.exceptions import add_exception_handlers

logging.basicConfig(level=settings.log_level)
log = logging.getLogger("imagevault")

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
        Async context manager for FastAPI application lifecycle events.
        Initializes and closes resources (S3, DynamoDB, URL cache) for the application.
    """
    # Resources may already be installed, e.g. by tests
    if not hasattr(app.state, "s3"):
        app.state.s3 = S3Service()
    if not hasattr(app.state, "db"):
        app.state.db = DynamoDBService()
    if not hasattr(app.state, "allowlist"):
        app.state.allowlist = AllowlistService()
    if not hasattr(app.state, "url_cache"):
        app.state.url_cache = PresignedUrlCache(
            capacity=settings.presign_cache_capacity,
            lookup_margin=settings.presign_cache_lookup_margin,
            expiry_margin=settings.presign_cache_expiry_margin,
        )
    log.info("Image Vault started (bucket=%s, table=%s)", settings.s3_bucket_name, settings.images_table)
    yield
    # Cleanup resources
    app.state.s3.close()
    app.state.db.close()
    app.state.allowlist.close()

# Initialize App
app = FastAPI(
    title=settings.app_title,
    lifespan=lifespan,
    description="Image Vault: presigned uploads, metadata and signed URLs",
)

# Add exception handlers
add_exception_handlers(app)

# CORS - Middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=['*'],
    allow_methods=["*"],
    allow_headers=["*"],
)

# Add the routers
app.include_router(image_router)
app.include_router(session_router)

# Check Health
@app.get("/")
def read_root():
    """
        Default end point

    """
    return "Image Vault is running."

if __name__ == "__main__":
    uvicorn.run("imagevault.main:app", host="0.0.0.0", port=8000, reload=True)
