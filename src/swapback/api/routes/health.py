"""Health check endpoints."""

from typing import Optional

from fastapi import APIRouter, Request

from swapback import __version__
from swapback.config import get_settings
from swapback.errors import PersistenceError
from swapback.ledger.store import LedgerStore

router = APIRouter()


def pipeline_status(request: Request) -> Optional[dict]:
    """Queue and watcher state, or None when the API runs on its own."""
    queue = getattr(request.app.state, "queue", None)
    watcher = getattr(request.app.state, "watcher", None)
    if queue is None and watcher is None:
        return None

    status = {}
    if queue is not None:
        current = queue.current
        status["queue"] = {
            "running": queue.running,
            "state": queue.state.value,
            "pending": queue.pending,
            "processed": queue.processed,
            "current": current.transaction_hash if current is not None else None,
        }
    if watcher is not None:
        status["watcher"] = {
            "next_block": watcher.next_block,
            "behind_head": watcher.behind_head,
        }
    return status


@router.get("/health")
async def health_check():
    """Basic health check endpoint."""
    return {"status": "healthy", "service": "swapback"}


@router.get("/health/detailed")
async def detailed_health(request: Request):
    """Detailed health check with pipeline and ledger state."""
    settings = get_settings()
    store = LedgerStore()

    status = "healthy"
    try:
        ledger = {
            "latest_block": await store.latest_persisted_block(),
            "failed_attempts": len(await store.all_failed_attempts()),
            "unsettled_intents": len(await store.get_unsettled_intents()),
        }
    except PersistenceError as e:
        status = "degraded"
        ledger = {"error": str(e)}

    return {
        "status": status,
        "service": "swapback",
        "version": __version__,
        "config": settings.get_safe_dict(),
        "ledger": ledger,
        "pipeline": pipeline_status(request),
    }
