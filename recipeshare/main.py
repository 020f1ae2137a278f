# RecipeShare API Main Entry Point
import logging
import sys
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from .settings import settings
from .routers.ready import router as ready_router
from .routers.recipes import router as recipes_router
from .routers.ratings import router as ratings_router
from .routers.students import router as students_router
from .routers.catalog import router as catalog_router
from .routers.dev import router as dev_router
from .services.storage import LocalUploadStorage

# Configure structured logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[logging.StreamHandler(sys.stdout)]
)
logger = logging.getLogger("recipeshare")

# Rate limiter (per-IP)
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[settings.rate_limit_default],
    enabled=settings.rate_limit_enabled,
)

app = FastAPI(title="RecipeShare API", version="0.1.0")
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(ready_router, prefix="/api", tags=["ready"])
app.include_router(recipes_router, prefix="/api", tags=["recipes"])
app.include_router(ratings_router, prefix="/api", tags=["ratings"])
app.include_router(students_router, prefix="/api", tags=["students"])
app.include_router(catalog_router, prefix="/api", tags=["catalog"])
app.include_router(dev_router, prefix="/api", tags=["dev"])

# Local uploads are served by the API itself; S3 uploads come from the bucket URL
if settings.storage_backend == "local":
    app.mount(
        settings.upload_public_path,
        StaticFiles(directory=str(LocalUploadStorage().root), check_dir=False),
        name="uploads",
    )
