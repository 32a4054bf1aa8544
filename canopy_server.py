"""Canopy backend server.

Mounts the Canopy router under a single FastAPI application. The router
is imported inside a guard so that a broken storage setup does not
prevent the server from starting -- the unified health endpoint then
reports the failure.

Usage::

    # Development (auto-reload)
    uvicorn canopy_server:app --reload --port 8430

    # Production
    uvicorn canopy_server:app --host 0.0.0.0 --port 8430

    # Or run directly
    python canopy_server.py

The database lives in ``data/canopy/`` unless ``CANOPY_DATA_DIR`` points
elsewhere. Referral links point at ``CANOPY_APP_URL`` (default
``http://localhost:3000``).
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from shared.hardening import SystemHealthChecker

logger = logging.getLogger("canopy")

# ---------------------------------------------------------------------------
# Application
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Canopy API",
    description=(
        "Backend for referral campaigns: participant registration, "
        "team hierarchy layout, dashboard KPIs and exports."
    ),
    version="0.1.0",
)

# ---------------------------------------------------------------------------
# CORS -- allow local web dev server origins
# ---------------------------------------------------------------------------

_ALLOWED_ORIGINS = [
    "http://localhost:3000",   # Web dev server
    "http://localhost:8430",   # Self (for Swagger UI)
    "http://127.0.0.1:3000",
    "http://127.0.0.1:8430",
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=_ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

_router_status: dict[str, Any] = {"loaded": False, "error": None}
_health_checker = SystemHealthChecker()


def _mount_canopy() -> None:
    """Mount the Canopy router at ``/api/canopy/``.

    Initializes CanopyStorage with an on-disk SQLite database.
    """
    try:
        from canopy.src.server import configure, init_canopy_storage, router as canopy_router

        data_dir = Path(os.environ.get("CANOPY_DATA_DIR", "data/canopy"))
        data_dir.mkdir(parents=True, exist_ok=True)
        storage = init_canopy_storage(data_dir / "canopy.db")
        _health_checker.connection = storage.connection
        app_url = os.environ.get("CANOPY_APP_URL")
        if app_url:
            configure(registration_base_url=app_url)

        app.include_router(canopy_router, prefix="/api/canopy", tags=["canopy"])
        _router_status["loaded"] = True
        logger.info("Canopy router mounted at /api/canopy/")
    except Exception as exc:
        _router_status["error"] = str(exc)
        logger.warning("Canopy router failed to load: %s", exc)


# ---------------------------------------------------------------------------
# Unified health endpoint
# ---------------------------------------------------------------------------


@app.get("/api/health")
def unified_health() -> dict[str, Any]:
    """Return health status for the Canopy backend.

    Returns:
        Dictionary with overall status, router load state and
        per-component checks.
    """
    report = _health_checker.report()
    if not _router_status["loaded"]:
        report["status"] = "error"
    return {
        "status": report["status"],
        "version": "0.1.0",
        "router": _router_status,
        "components": report["components"],
    }


_mount_canopy()


# ---------------------------------------------------------------------------
# Main entry point
# ---------------------------------------------------------------------------


def run_server(host: str = "127.0.0.1", port: int = 8430) -> None:
    """Start the Canopy server via uvicorn.

    Args:
        host: Bind address. Defaults to localhost.
        port: Port number. Defaults to 8430.
    """
    import uvicorn

    uvicorn.run(app, host=host, port=port)


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    )
    run_server()
