import logging
from typing import Optional

from fastapi import Header, HTTPException

from .config import get_settings


def require_service_api_key(x_api_key: Optional[str] = Header(default=None)):
    expected = get_settings().service_api_key
    if not expected or x_api_key != expected:
        raise HTTPException(status_code=401, detail="Invalid X-API-KEY")
    return True


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
