#main.py
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from app.errors import ReconcileError
from middleware import RequestContextMiddleware
from routes.admin_payouts import router as admin_payouts_router
from routes.balances import router as balances_router
from routes.checkout import router as checkout_router
from routes.health import router as health_router
from routes.payouts import router as payouts_router
from routes.webhooks import router as webhooks_router
from services.errors import error_response
from settings import settings, validate_env_settings

logger = logging.getLogger("consultpay")


def _configure_logging() -> None:
    level = getattr(logging, (settings.LOG_LEVEL or "INFO").upper(), logging.INFO)
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s %(message)s")
    logging.getLogger("consultpay").setLevel(level)


def create_app() -> FastAPI:
    validate_env_settings()
    _configure_logging()

    app = FastAPI(title="ConsultPay API", version="1.0.0")

    app.add_middleware(RequestContextMiddleware)

    # -----------------------------
    # ROUTERS
    # -----------------------------
    app.include_router(health_router)
    app.include_router(checkout_router)
    app.include_router(webhooks_router)
    app.include_router(payouts_router)
    app.include_router(admin_payouts_router)
    app.include_router(balances_router)

    @app.exception_handler(ReconcileError)
    async def domain_error_handler(request: Request, exc: ReconcileError):
        return error_response(exc)

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception(
            "unhandled_error request_id=%s path=%s",
            getattr(request.state, "request_id", None),
            request.url.path,
        )
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"},
        )

    return app


app = create_app()
