# loyalty/main.py
import logging
import sys
import time
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from . import auth, balance, orders
from .accrual import AccrualClient
from .config import Settings, load_settings
from .errors import ErrorKind, LoyaltyError
from .logging_setup import setup_logging
from .middleware import GunzipRequestMiddleware
from .sql_storage import SQLStorage
from .storage import MemoryStorage, Storage
from .worker import ReconciliationWorker

logger = logging.getLogger(__name__)

# empty bodies (204s) are never compressed
GZIP_MIN_SIZE = 1

ERROR_STATUS = {
    ErrorKind.INVALID_FORMAT: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ErrorKind.CONFLICT: status.HTTP_409_CONFLICT,
    ErrorKind.INSUFFICIENT_FUNDS: status.HTTP_402_PAYMENT_REQUIRED,
    ErrorKind.TRANSIENT: status.HTTP_500_INTERNAL_SERVER_ERROR,
    ErrorKind.ORACLE_PROTOCOL: status.HTTP_502_BAD_GATEWAY,
    ErrorKind.UNAUTHORIZED: status.HTTP_401_UNAUTHORIZED,
}


def build_storage(settings: Settings) -> Storage:
    if settings.database_uri:
        return SQLStorage.from_uri(settings.async_database_uri)
    logger.warning("DATABASE_URI is not set, using in-memory storage (data is lost on restart)")
    return MemoryStorage()


def create_app(
    settings: Optional[Settings] = None,
    storage: Optional[Storage] = None,
    accrual_client: Optional[AccrualClient] = None,
    start_worker: bool = True,
) -> FastAPI:
    settings = settings or load_settings()
    setup_logging(settings.log_level)

    app = FastAPI(
        title="Loyalty accrual",
        description="Loyalty points: order uploads, accrual reconciliation, balance and withdrawals",
        version="1.0.0",
    )
    app.state.settings = settings
    app.state.storage = storage or build_storage(settings)
    client = accrual_client or AccrualClient(settings.accrual_address, timeout=settings.accrual_timeout)
    app.state.worker = ReconciliationWorker(app.state.storage, client, poll_interval=settings.poll_interval)

    # ✅ CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # 🗜️ gzip: compressed responses for clients that accept them, inflated request bodies
    app.add_middleware(GZipMiddleware, minimum_size=GZIP_MIN_SIZE)
    app.add_middleware(GunzipRequestMiddleware)

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        started = time.perf_counter()
        response = await call_next(request)
        logger.info("%s %s -> %d (%.1f ms)", request.method, request.url.path,
                    response.status_code, (time.perf_counter() - started) * 1000)
        return response

    @app.exception_handler(LoyaltyError)
    async def loyalty_error_handler(request: Request, exc: LoyaltyError):
        code = ERROR_STATUS[exc.kind]
        if code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc)
            return JSONResponse(status_code=code, content={"detail": "Internal server error"})
        return JSONResponse(status_code=code, content={"detail": exc.message, "kind": exc.kind.value})

    @app.exception_handler(RequestValidationError)
    async def bad_request_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST,
                            content={"detail": "Invalid request format"})

    # ✅ Роутеры
    app.include_router(auth.router)
    app.include_router(orders.router)
    app.include_router(balance.router)

    @app.get("/health")
    async def health():
        return {"status": "ok", "worker_running": app.state.worker.running}

    @app.on_event("startup")
    async def on_startup():
        await app.state.storage.init()
        if start_worker:
            app.state.worker.start()

    @app.on_event("shutdown")
    async def on_shutdown():
        await app.state.worker.shutdown(grace=settings.accrual_timeout)
        await client.aclose()
        await app.state.storage.close()

    return app


def main(argv=None) -> None:
    settings = load_settings(sys.argv[1:] if argv is None else argv)
    app = create_app(settings)
    uvicorn.run(app, host=settings.host, port=settings.port, log_config=None)


if __name__ == "__main__":
    main()
