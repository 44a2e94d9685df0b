# backend-server/app/main.py
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from app.core.config import settings
from app.db import models, session
from app.api.v1.api import api_router
from app.services.session_provider import SessionProvider

# Import the specific router from the auth endpoint file
from app.api.v1.endpoints import auth

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    models.Base.metadata.create_all(bind=session.engine)
    provider = SessionProvider(session.get_session_factory())
    app.state.session_provider = provider
    app.state.change_feed = session.get_change_feed()
    await provider.start()
    logger.info("PetaProgress API started")
    yield
    await provider.stop()
    logger.info("PetaProgress API stopped")

app = FastAPI(title="PetaProgress API", lifespan=lifespan)

@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content={"detail": "Internal server error"})

# Include the main router for all routes prefixed with /api/v1
app.include_router(api_router, prefix="/api/v1")

# Include the auth router separately for the /auth prefix
app.include_router(auth.router, prefix="/auth")

@app.get("/")
def read_root():
    return {"message": "Welcome to the PetaProgress API"}
