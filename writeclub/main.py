import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException
from dotenv import load_dotenv

# Load env from writeclub/.env
package_dir = os.path.dirname(os.path.abspath(__file__))
if "PYTEST_CURRENT_TEST" not in os.environ:
    load_dotenv(dotenv_path=os.path.join(package_dir, ".env"))

# Import after dotenv is loaded
from writeclub.core.config import settings, validate_config
from writeclub.core.database import check_connection, create_all_tables
from writeclub.core.logging import configure_logging
from writeclub.core.middleware.request_id import RequestIdMiddleware
from writeclub.core.validation import validate_env
from writeclub.core.errors import (
    AppError,
    app_error_handler,
    http_error_handler,
    unhandled_exception_handler,
)
from writeclub.api import admin, competitions, cron, health, stories, usage

configure_logging(settings.ENV)
validate_env()
validate_config(strict=getattr(settings, "CONFIG_STRICT", False))


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger = logging.getLogger("writeclub")
    logger.info("Starting WriteClub competition service...")
    import time
    app.state.startup_time = time.time()
    if settings.DATABASE_URL:
        create_all_tables()
        if not check_connection():
            logger.warning("Database not reachable at startup")
    try:
        yield
    finally:
        logging.getLogger("writeclub").info("Stopping WriteClub competition service...")


app = FastAPI(title="WriteClub - Competition Service", lifespan=lifespan)

# Middlewares
app.add_middleware(RequestIdMiddleware)

app.add_exception_handler(AppError, app_error_handler)
app.add_exception_handler(HTTPException, http_error_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

app.include_router(health.root_router, tags=["health"])
app.include_router(cron.router)
app.include_router(competitions.router)
app.include_router(usage.router)
app.include_router(stories.router)
app.include_router(admin.router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("writeclub.main:app", host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
