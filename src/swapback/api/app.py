"""FastAPI application factory."""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from swapback.config import get_settings
from swapback.ledger.database import close_db, init_db


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    # Startup
    await init_db()
    yield
    # Shutdown
    await close_db()


def create_app(standalone: bool = True, queue=None, watcher=None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        standalone: Own the database lifecycle. The settlement service
            passes False because it opens and closes the database itself.
        queue: Running swap queue, reported by the detailed health check.
        watcher: Running chain watcher, reported by the detailed health check.
    """
    settings = get_settings()

    app = FastAPI(
        title="Swapback API",
        description="Read-only view of USDC to ARB settlements",
        version="0.1.0",
        lifespan=lifespan if standalone else None,
        debug=settings.debug,
    )
    app.state.queue = queue
    app.state.watcher = watcher

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.debug else [],
        allow_credentials=True,
        allow_methods=["GET"],
        allow_headers=["*"],
    )

    # Register routes
    from swapback.api.routes import health, swaps

    app.include_router(health.router, tags=["Health"])
    app.include_router(swaps.router, prefix="/api/v1", tags=["Swaps"])

    return app


# Default app instance
app = create_app()
