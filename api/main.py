"""
FastAPI application for the MTR reference review service.

GOVERNANCE:
- All clinical decisions by licensed pharmacists
- Demo-grade in-memory storage only
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.routes import permissions_router, review_router
from config import get_settings
from workflow.steps import MTR_STEPS

settings = get_settings()

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(
        "MTR review service listening on %s:%s with %d workflow steps",
        settings.api_host,
        settings.api_port,
        len(MTR_STEPS),
    )
    yield
    logger.info("MTR review service stopped")


app = FastAPI(
    title="MTR Review Service",
    description="Reference persistence service for the medication therapy review workflow",
    version="1.0.0",
    lifespan=lifespan,
)

# Review front-ends send the pharmacist identity as a custom header
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # In production, restrict to specific origins
    allow_methods=["GET", "POST", "PUT"],
    allow_headers=["Content-Type", "X-Pharmacist-Id"],
)

app.include_router(permissions_router)
app.include_router(review_router)


@app.get("/health")
def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "service": "mtr_review_service"}


@app.get("/v1/steps")
def list_steps():
    """The ordered MTR step catalogue, for clients rendering a stepper."""
    return [
        {
            "index": index,
            "step_id": step.step_id,
            "label": step.label,
            "description": step.description,
            "validation_required": step.validation_required,
        }
        for index, step in enumerate(MTR_STEPS)
    ]


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "api.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=True,
    )
