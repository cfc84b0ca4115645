import logging
from contextlib import asynccontextmanager

import httpx
import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import get_settings
from .db import init_db
from .errors import BillPayError
from .routers import payment_records, payments
from .utils import configure_logging

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    configure_logging(settings.log_level)
    # init db tables if not using migrations
    await init_db()
    app.state.http_client = httpx.AsyncClient(timeout=settings.gateway_timeout_seconds)
    try:
        yield
    finally:
        await app.state.http_client.aclose()
        app.state.http_client = None


app = FastAPI(title="Bill Payments Service", lifespan=lifespan)

# CORS - the bill page is served from another origin
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # change to your frontend domains in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(payments.router)
app.include_router(payment_records.router)


@app.exception_handler(BillPayError)
async def billpay_error_handler(request: Request, exc: BillPayError):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(status_code=400, content={"error": "Invalid request body"})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


@app.get("/health")
def health():
    return {"ok": True}


if __name__ == "__main__":
    settings = get_settings()
    uvicorn.run("billpay.main:app", host=settings.app_host, port=settings.app_port, reload=(settings.env != "production"))
