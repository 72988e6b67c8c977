"""
FastAPI application entry point for the LDSS backend.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI

from ldss.config import get_settings
from ldss.routes import router


def create_app() -> FastAPI:
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s - %(message)s",
    )
    app = FastAPI(title="LDSS Backend (FastAPI)", version="0.1.0")
    app.include_router(router, prefix=settings.api_prefix)
    return app


app = create_app()
