import logging

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from mangum import Mangum
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.cors import CORSMiddleware

load_dotenv("truthchain/.env")

from truthchain import containers  # noqa: E402
from truthchain.config import settings  # noqa: E402
from truthchain.core.exception_handlers import (  # noqa: E402
    handle_base_api_exception,
    handle_http_exception,
    handle_unexpected_error,
    handle_validation_error,
)
from truthchain.core.exceptions import BaseAPIException  # noqa: E402
from truthchain.core.logging_middleware import LoggingMiddleware  # noqa: E402
from truthchain.logging_config import setup_logging  # noqa: E402
from truthchain.routers import (  # noqa: E402
    admin_router,
    balance_router,
    health_router,
    post_router,
    stake_router,
    wallet_router,
)

setup_logging(settings.LOG_LEVEL, settings.LIBRARY_LOG_LEVEL)
logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    app = FastAPI(title=settings.APP_NAME, debug=settings.DEBUG)
    app.container = containers.Container()  # type: ignore

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(LoggingMiddleware)

    app.add_exception_handler(BaseAPIException, handle_base_api_exception)
    app.add_exception_handler(StarletteHTTPException, handle_http_exception)
    app.add_exception_handler(RequestValidationError, handle_validation_error)
    app.add_exception_handler(Exception, handle_unexpected_error)

    app.include_router(health_router.router)
    for module in (
        balance_router, stake_router, post_router, wallet_router, admin_router
    ):
        app.include_router(module.router, prefix=settings.API_V1_STR)

    logger.info(f"{settings.APP_NAME} started ({settings.ENVIRONMENT})")
    return app


app = create_app()

handler = Mangum(app)


def run() -> None:
    """로컬/컨테이너 실행용 진입점 (Lambda는 handler 사용)"""
    import uvicorn

    uvicorn.run(
        "truthchain.main:app",
        host=settings.HOST,
        port=settings.PORT,
        log_config=None,
    )


if __name__ == "__main__":
    run()
