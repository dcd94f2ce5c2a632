from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import Settings, get_settings
from .governance.selector import CatalogError
from .logging_config import REQUEST_ID_HEADER, bind_request, logger, setup_logging
from .routes import account, auth, cases, health
from .services.case_generator import QuotaExceeded
from .services.container import Services, build_services
from .services.generation import GenerationError
from .services.payments import PaymentError


def create_app(settings: Settings | None = None, services: Services | None = None) -> FastAPI:
    settings = settings or get_settings()
    services = services or build_services(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        services.throttle.start()
        logger.info("app.start", throttle_backend=settings.throttle_backend, simulated=services.generator.simulated)
        yield
        await services.throttle.stop()
        logger.info("app.stop")

    app = FastAPI(title=settings.app_name, version="1.0.0", lifespan=lifespan)
    app.state.services = services
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def request_context(request: Request, call_next):
        request_id = bind_request(request.headers.get(REQUEST_ID_HEADER), request.url.path)
        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:  # pragma: no cover - wiring
        logger.warning("value.error", path=str(request.url), reason=str(exc))
        return JSONResponse(status_code=400, content={"error_code": "VALUE_ERROR", "message": str(exc)})

    @app.exception_handler(QuotaExceeded)
    async def quota_handler(request: Request, exc: QuotaExceeded) -> JSONResponse:
        decision = exc.decision
        return JSONResponse(
            status_code=403,
            content={
                "error_code": "QUOTA_EXCEEDED",
                "message": "Case generation limit reached for your plan.",
                "remaining": decision.remaining,
                "reset_time": decision.reset_time.isoformat(),
            },
        )

    @app.exception_handler(CatalogError)
    async def catalog_handler(request: Request, exc: CatalogError) -> JSONResponse:
        logger.error("catalog.error", path=str(request.url), reason=str(exc))
        return JSONResponse(status_code=500, content={"error_code": "CATALOG_UNAVAILABLE", "message": str(exc)})

    @app.exception_handler(GenerationError)
    async def generation_handler(request: Request, exc: GenerationError) -> JSONResponse:
        logger.error("generation.error", path=str(request.url), reason=str(exc))
        return JSONResponse(
            status_code=502,
            content={"error_code": "GENERATION_FAILED", "message": f"Failed to generate response: {exc}"},
        )

    @app.exception_handler(PaymentError)
    async def payment_handler(request: Request, exc: PaymentError) -> JSONResponse:
        return JSONResponse(status_code=502, content={"error_code": "PAYMENT_FAILED", "message": str(exc)})

    app.include_router(health.router)
    app.include_router(auth.router)
    app.include_router(cases.router)
    app.include_router(account.router)
    return app


_settings = get_settings()
setup_logging(_settings.log_level, json_logs=_settings.log_json)
app = create_app(_settings)
