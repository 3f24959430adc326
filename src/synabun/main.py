"""SynaBun admin API application.

Hosts the category and trash management surface used by the web admin. The
agent-facing tools live in :mod:`synabun.mcp.server`; both share one
:class:`~synabun.runtime.Runtime` shape.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import logfire
import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from synabun import __version__
from synabun.api import dependencies
from synabun.api.endpoints import categories, core, memories
from synabun.core.base import ApplicationError
from synabun.core.handlers import GlobalErrorHandler
from synabun.core.logging import get_logger, setup_logging
from synabun.runtime import Runtime

logfire.configure(service_name="synabun", send_to_logfire="if-token-present")
setup_logging()
logger = get_logger(__name__)

error_handler = GlobalErrorHandler()


def create_app(runtime: Runtime | None = None, watch: bool = True) -> FastAPI:
    """Build the admin app. ``runtime`` is created on startup when not given."""

    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncGenerator[None]:
        active = runtime or Runtime()
        logger.info("Starting SynaBun admin API")
        try:
            await active.start(watch=watch)
            dependencies.runtime = active
            yield
        except Exception as e:
            logger.error(f"Failed to start SynaBun: {e}", exc_info=True)
            raise
        finally:
            dependencies.runtime = None
            await active.stop()
            logger.info("SynaBun shutdown complete")

    app = FastAPI(
        title="SynaBun API",
        description="Category and memory administration for the SynaBun memory core",
        version=__version__,
        lifespan=lifespan,
    )
    logfire.instrument_fastapi(app)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(ApplicationError)
    async def application_error_handler(request: Request, exc: ApplicationError) -> JSONResponse:
        code, body = error_handler.handle(exc, {"path": request.url.path})
        return JSONResponse(status_code=code, content=body)

    @app.exception_handler(HTTPException)
    async def http_exception_handler(_request: Request, exc: HTTPException) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content=error_handler.handle_http_exception(exc))

    app.include_router(categories.router, prefix="/api/v1/categories", tags=["categories"])
    app.include_router(memories.router, prefix="/api/v1/memories", tags=["memories"])
    app.include_router(core.router)
    return app


if __name__ == "__main__":
    logger.info("Starting SynaBun development server...")
    uvicorn.run(create_app(), host="0.0.0.0", port=8000, log_level="info", access_log=True)
