# backend/assetdb/main.py
import os
from typing import List

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm.exc import StaleDataError

from .apps.audit.router import router as audit_router
from .apps.rma.router import router as rma_router
from .apps.stock.router import router as stock_router
from .errors import AppendOnlyViolation


def _allowed_origins() -> List[str]:
    """
    Parse CORS_ALLOWED_ORIGINS from env.

    Accepts comma-separated origins. If unset, defaults to local dev ports.
    """
    raw = os.getenv("CORS_ALLOWED_ORIGINS", "")
    if raw:
        origins = [origin.strip() for origin in raw.split(",") if origin.strip()]
        if origins:
            return origins
    return [
        "http://127.0.0.1:5173",
        "http://localhost:5173",
        "http://localhost:4173",
    ]


app = FastAPI(title="Asset RMA Portal API", version="1.0.0")
cors_origins = _allowed_origins()
allow_credentials = "*" not in cors_origins

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=allow_credentials,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(StaleDataError)
def stale_data_handler(request: Request, exc: StaleDataError):
    return JSONResponse(
        status_code=status.HTTP_409_CONFLICT,
        content={
            "detail": {
                "code": "conflict",
                "message": "The record was modified by another request. Reload and retry.",
            }
        },
    )


@app.exception_handler(AppendOnlyViolation)
def append_only_handler(request: Request, exc: AppendOnlyViolation):
    return JSONResponse(
        status_code=status.HTTP_409_CONFLICT,
        content={"detail": {"code": "append_only", "message": str(exc)}},
    )


@app.get("/", tags=["health"])
def read_root():
    return {"status": "ok", "message": "Asset RMA Portal backend is running"}


@app.get("/health", tags=["health"])
def health():
    return {"status": "ok"}


app.include_router(rma_router)
app.include_router(stock_router)
app.include_router(audit_router)
