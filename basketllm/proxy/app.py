"""FastAPI application for the basketllm service."""

import asyncio
import logging
import sys
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from basketllm import __version__
from basketllm.config import BasketConfig, load_config
from basketllm.exceptions import BasketLLMError, ConfigurationError, ExhaustedProvidersError
from basketllm.orchestrator import Orchestrator

from .routes import admin_router, chat_router, health_router, rate_limits_router

logger = logging.getLogger(__name__)


async def run_maintenance_loop(orchestrator: Orchestrator, interval: float) -> None:
    """Run ``orchestrator.run_maintenance`` every ``interval`` seconds."""
    while True:
        await asyncio.sleep(interval)
        try:
            await orchestrator.run_maintenance()
        except Exception:
            logger.exception("Scheduled maintenance failed")


async def build_orchestrator(config: BasketConfig) -> Orchestrator:
    """Create the orchestrator, with SQL stores when a database is configured."""
    cache_store = usage_store = None

    if config.general.database_url:
        from basketllm.db import SQLCacheStore, SQLUsageStore, create_tables, init_db

        session_maker = init_db(config.general.database_url)
        await create_tables()
        cache_store = SQLCacheStore(session_maker)
        usage_store = SQLUsageStore(session_maker)
        logger.info("Using database-backed cache and usage ledger")
    else:
        logger.info("No database configured, cache and usage ledger are in-process only")

    return Orchestrator.from_config(config, cache_store=cache_store, usage_store=usage_store)


def _error_response(status_code: int, exc: BasketLLMError) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "error": {
                "message": exc.message,
                "type": exc.type,
                "code": exc.code,
            }
        },
    )


def create_app(
    config_path: Optional[str] = None,
    orchestrator: Optional[Orchestrator] = None,
    config: Optional[BasketConfig] = None,
) -> FastAPI:
    """Create the FastAPI application.

    Args:
        config_path: Path to configuration file
        orchestrator: Pre-built orchestrator; skips database setup
        config: Pre-loaded configuration

    Returns:
        FastAPI application
    """
    if config is None:
        config = BasketConfig() if orchestrator is not None else load_config(config_path)

    logging.basicConfig(
        level=config.general.log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stdout,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan handler."""
        owns_db = False
        if getattr(app.state, "orchestrator", None) is None:
            app.state.orchestrator = await build_orchestrator(config)
            owns_db = bool(config.general.database_url)

        maintenance = None
        if config.general.maintenance_interval > 0:
            maintenance = asyncio.create_task(
                run_maintenance_loop(app.state.orchestrator, config.general.maintenance_interval)
            )

        yield

        if maintenance is not None:
            maintenance.cancel()
            try:
                await maintenance
            except asyncio.CancelledError:
                pass
        await app.state.orchestrator.drain()
        if owns_db:
            from basketllm.db import close_db
            await close_db()

    app = FastAPI(
        title="basketllm",
        description="LLM orchestration service: routing, fallback, caching, rate limits and cost tracking",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.config = config
    app.state.orchestrator = orchestrator

    @app.exception_handler(ExhaustedProvidersError)
    async def exhausted_handler(request: Request, exc: ExhaustedProvidersError):
        logger.error("No provider available for %s: %s", exc.task_type, exc.attempts)
        return _error_response(503, exc)

    @app.exception_handler(ConfigurationError)
    async def configuration_handler(request: Request, exc: ConfigurationError):
        return _error_response(400, exc)

    @app.exception_handler(BasketLLMError)
    async def basketllm_exception_handler(request: Request, exc: BasketLLMError):
        status_code = 500
        if exc.code and exc.code.isdigit():
            status_code = int(exc.code)
        return _error_response(status_code, exc)

    app.include_router(chat_router, prefix="/v1")
    app.include_router(rate_limits_router, prefix="/v1")
    app.include_router(admin_router)
    app.include_router(health_router)

    return app


def cli():
    """Command line interface for the basketllm service."""
    import argparse
    import uvicorn

    parser = argparse.ArgumentParser(description="basketllm orchestration service")
    parser.add_argument(
        "--config", "-c",
        help="Path to configuration file",
        default=None,
    )
    parser.add_argument(
        "--host", "-H",
        help="Host to bind to",
        default="0.0.0.0",
    )
    parser.add_argument(
        "--port", "-p",
        help="Port to bind to",
        type=int,
        default=8000,
    )

    args = parser.parse_args()

    uvicorn.run(create_app(args.config), host=args.host, port=args.port)


if __name__ == "__main__":
    cli()
