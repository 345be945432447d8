"""FastAPI application for the cancellation and refund engine.

Exposes the engine's commands as REST endpoints under /api and wraps the app
with Mangum for AWS Lambda behind API Gateway.
"""

import os
from datetime import UTC, datetime
from typing import Any

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from mangum import Mangum

from refund_api.exceptions import register_exception_handlers
from refund_api.middleware.correlation import CorrelationIdMiddleware
from refund_api.routes import (
    cancellations_router,
    disputes_router,
    policies_router,
    refunds_router,
)
from refund_engine.utils.logging import configure_logging, get_logger

configure_logging()
logger = get_logger(__name__)

DEFAULT_CORS_ORIGINS = "http://localhost:3000,http://127.0.0.1:3000"

app = FastAPI(
    title="Cancellation & Refund API",
    description="Cancellation requests, refunds and disputes",
    version="0.1.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        origin.strip()
        for origin in os.getenv("CORS_ALLOWED_ORIGINS", DEFAULT_CORS_ORIGINS).split(",")
        if origin.strip()
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(CorrelationIdMiddleware)

register_exception_handlers(app)

app.include_router(cancellations_router, prefix="/api")
app.include_router(refunds_router, prefix="/api")
app.include_router(disputes_router, prefix="/api")
app.include_router(policies_router, prefix="/api")


@app.get("/api/ping")
async def ping() -> dict[str, Any]:
    """Health check endpoint."""
    return {
        "status": "ok",
        "timestamp": datetime.now(UTC).isoformat(),
        "service": "refund-api",
        "environment": os.getenv("ENVIRONMENT", "dev"),
    }


# Lambda handler - Mangum wraps FastAPI for AWS Lambda + API Gateway
handler = Mangum(app, lifespan="off")


def run_server(host: str = "0.0.0.0", port: int = 8080, reload: bool = True) -> None:
    """Run the FastAPI server with uvicorn.

    Args:
        host: Host to bind to
        port: Port to listen on
        reload: Enable hot reload for development
    """
    import uvicorn

    if reload:
        uvicorn.run(
            "refund_api.main:app",
            host=host,
            port=port,
            reload=True,
            reload_dirs=["backend/api/src", "backend/engine/src"],
        )
    else:
        uvicorn.run(app, host=host, port=port)


if __name__ == "__main__":
    run_server()
