import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse

from trackview.api import devices
from trackview.core.errors import ErrorKind, TelemetryError
from trackview.core.influx_client import close_influx_client
from trackview.storage.store_client import StoreClient, get_store_client

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

ERROR_STATUS_CODES = {
    ErrorKind.INVALID_RANGE: 400,
    ErrorKind.RESOURCE_NOT_FOUND: 404,
    ErrorKind.AUTHENTICATION_FAILED: 502,
    ErrorKind.CONNECTION_UNAVAILABLE: 503,
    ErrorKind.TIMEOUT: 504,
    ErrorKind.QUERY_SYNTAX_INVALID: 500,
    ErrorKind.UNKNOWN: 500,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    store = get_store_client()
    if await store.test_connection():
        logger.info("Store connection verified on startup")
    else:
        logger.warning("Initial store connection test failed - will retry on first query")
    logger.info("Trackview started")
    yield
    await close_influx_client()
    logger.info("Trackview stopped")


app = FastAPI(title="Trackview", version="1.0.0", lifespan=lifespan)

app.include_router(devices.router, prefix="/devices", tags=["devices"])


@app.get("/health")
async def health_check(store: StoreClient = Depends(get_store_client)):
    status = await store.get_connection_status()
    return {
        "status": "healthy" if status.connected else "degraded",
        "service": "trackview",
        "store": status.model_dump(mode="json"),
    }


@app.exception_handler(TelemetryError)
async def telemetry_error_handler(request: Request, exc: TelemetryError):
    status_code = ERROR_STATUS_CODES.get(exc.kind, 500)
    if status_code >= 500:
        logger.error(f"{request.url.path} failed: {exc}")
    return JSONResponse(
        status_code=status_code, content={"error": str(exc), "kind": exc.kind.value}
    )


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError):
    return JSONResponse(status_code=400, content={"error": str(exc)})
