from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import CONFIG
from .errors import TimelineError
from .routes import timeline as timeline_routes

logger = logging.getLogger(__name__)


app = FastAPI(
    title="Nugget Timeline API",
    version="0.1.0",
    description="Merged activity, milestone and chat feed per child",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CONFIG.cors_origins,
    allow_methods=["GET"],
    allow_headers=["*"],
    allow_credentials=False,
)

app.include_router(timeline_routes.router)


@app.exception_handler(TimelineError)
async def timeline_error_handler(request: Request, exc: TimelineError) -> JSONResponse:
    if exc.http_status >= 500:
        logger.error(
            "timeline request failed",
            extra={"path": request.url.path, "error": exc.code},
        )
    return JSONResponse(status_code=exc.http_status, content={"detail": exc.to_detail()})


@app.get("/health")
async def health() -> dict:
    return {"status": "ok"}
