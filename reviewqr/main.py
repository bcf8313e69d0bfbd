import logging
import os
import time
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

load_dotenv(dotenv_path=os.path.join(os.path.dirname(os.path.abspath(__file__)), ".env"))

from reviewqr.api import ai, businesses, form_templates, health, qr_codes, reviews, subscription, super_admin
from reviewqr.core.config import settings, validate_config
from reviewqr.core.database import create_all_tables, dispose_engine
from reviewqr.core.errors import (
    AppError,
    app_error_handler,
    http_error_handler,
    request_validation_handler,
    unhandled_exception_handler,
)
from reviewqr.core.logging import configure_logging
from reviewqr.core.middleware.request_id import RequestIdMiddleware

configure_logging(settings.ENV)
validate_config(strict=getattr(settings, "CONFIG_STRICT", False))


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger = logging.getLogger("reviewqr")
    logger.info("Starting reviewqr backend...")
    app.state.startup_time = time.time()
    if settings.ENV.lower() != "production" and settings.DATABASE_URL:
        # Production schemas are managed by migrations
        create_all_tables()
    yield
    logger.info("Shutting down reviewqr backend...")
    dispose_engine()


app = FastAPI(title="reviewqr", version="0.1.0", lifespan=lifespan)

app.add_middleware(RequestIdMiddleware)

app.add_exception_handler(AppError, app_error_handler)
app.add_exception_handler(HTTPException, http_error_handler)
app.add_exception_handler(RequestValidationError, request_validation_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[origin.strip() for origin in settings.CORS_ORIGINS.split(",") if origin.strip()],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health.root_router, tags=["health"])
app.include_router(subscription.router, tags=["subscription"])
app.include_router(ai.router, tags=["ai"])
app.include_router(reviews.router, tags=["reviews"])
app.include_router(qr_codes.router, tags=["qr-codes"])
app.include_router(form_templates.router, tags=["form-templates"])
app.include_router(businesses.router, tags=["businesses"])
app.include_router(super_admin.router, tags=["super-admin"])


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("reviewqr.main:app", host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
