"""Console entry points declared in pyproject.toml."""

import os

import uvicorn

from gateway.core.config import get_settings

APP = "gateway.main:app"


def _port() -> int:
    return int(os.environ.get("PORT", 8000))


def dev() -> None:
    """Auto-reloading server on localhost."""
    uvicorn.run(APP, host="127.0.0.1", port=_port(), reload=True, log_level="debug")


def start() -> None:
    """Production server; logging is handled by structlog, not uvicorn."""
    uvicorn.run(
        APP,
        host="0.0.0.0",
        port=_port(),
        proxy_headers=True,
        log_level=get_settings().log_level.lower(),
        access_log=False,
    )


def pytest() -> None:
    import pytest

    raise SystemExit(pytest.main(["-x", "tests"]))
