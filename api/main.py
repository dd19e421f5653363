"""
FastAPI Application: operational surface of the dispatcher.

Provides:
- Health and queue status for monitoring
- Queue history (log records) and log flushing
- Work submission for callers that cannot import the dispatcher

The app owns one Dispatcher. On startup it attaches the consumer and restores
the saved queue; on shutdown it stops polling and snapshots what is left.
"""
from __future__ import annotations

import importlib
import json
import structlog
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Optional

# Load .env before any config is read
from dotenv import load_dotenv
load_dotenv()

from fastapi import APIRouter, FastAPI, HTTPException, Query, Request
from pydantic import BaseModel

from backend.callback import BrowserWorkerConsumer, CallbackConsumer, CallbackNotifier
from config.settings import Settings, get_settings
from job_queue.consumer import Consumer
from job_queue.dispatcher import Dispatcher
from job_queue.events import QueueObserver
from job_queue.item import QueueItem
from models.schemas import QueueType

logger = structlog.get_logger()


# ──────────────────────────────────────────────────────────────
#  Bootstrap
# ──────────────────────────────────────────────────────────────

def load_consumer(path: str, settings: Settings = None) -> Consumer:
    """Instantiate the consumer named by "package.module:ClassName"."""
    if not path:
        settings = settings or get_settings()
        return CallbackConsumer(CallbackNotifier(settings.callback))
    module_name, _, class_name = path.partition(":")
    if not class_name:
        raise ValueError(f"Consumer path must look like 'package.module:ClassName', got {path!r}")
    module = importlib.import_module(module_name)
    return getattr(module, class_name)()


def create_app(settings: Settings = None, consumer: Consumer = None) -> FastAPI:
    settings = settings or get_settings()
    dispatcher = Dispatcher(settings.queue)
    dispatcher.set_info({
        "name": settings.app_name,
        "version": settings.version,
        **settings.info,
    })

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        worker = consumer or load_consumer(settings.consumer, settings)
        if isinstance(worker, BrowserWorkerConsumer) and worker.dispatcher is None:
            worker.dispatcher = dispatcher
        if isinstance(worker, QueueObserver):
            dispatcher.add_observer(worker)
        dispatcher.set_consumer(worker)
        if settings.queue.restore_on_start:
            dispatcher.load_queue()

        logger.info("dequeuer_started",
                    consumer=type(worker).__name__,
                    queue_dir=settings.queue.queue_dir)
        yield

        await dispatcher.stop()
        if isinstance(worker, QueueObserver):
            dispatcher.remove_observer(worker)
        if settings.queue.save_on_shutdown:
            dispatcher.save_queue()
            dispatcher.save_logs()
        notifier = getattr(worker, "notifier", None)
        if notifier is not None:
            await notifier.close()
        logger.info("dequeuer_stopped")

    app = FastAPI(
        title=f"{settings.app_name} API",
        description="Single-worker job dispatcher",
        version=settings.version,
        lifespan=lifespan,
    )
    app.state.dispatcher = dispatcher
    app.include_router(router)
    return app


# ──────────────────────────────────────────────────────────────
#  Request Models
# ──────────────────────────────────────────────────────────────

class QueueSubmitRequest(BaseModel):
    type: str = QueueType.WORK.value
    data: dict[str, Any] = {}
    callback: Optional[str] = None
    info: Optional[str] = None
    maps: Optional[dict[str, Any]] = None
    retry: bool = False


# ──────────────────────────────────────────────────────────────
#  Routes
# ──────────────────────────────────────────────────────────────

router = APIRouter()


def _dispatcher(request: Request) -> Dispatcher:
    return request.app.state.dispatcher


@router.get("/health")
async def health(request: Request):
    dispatcher = _dispatcher(request)
    return {
        "status": "healthy" if dispatcher.running else "stopped",
        "timestamp": datetime.now().isoformat(),
        "pending": dispatcher.pending,
    }


@router.get("/api/v1/status")
async def queue_status(request: Request):
    return _dispatcher(request).get_status()


@router.get("/api/v1/logs")
async def queue_logs(request: Request, raw: bool = Query(False)):
    logs = _dispatcher(request).get_logs(raw)
    # raw results may hold exceptions or other non-JSON values
    return json.loads(json.dumps(logs, default=str))


@router.post("/api/v1/queue")
async def submit_queue(req: QueueSubmitRequest, request: Request):
    dispatcher = _dispatcher(request)
    item = QueueItem.create(
        req.type, req.data, req.callback,
        info=req.info, maps=req.maps, retry=req.retry,
    )
    if req.info and dispatcher.has_pending_queue(item):
        raise HTTPException(409, f"A {req.type} queue for {req.info!r} is already pending")
    return dispatcher.add(item)


@router.post("/api/v1/queue/logs/save")
async def save_queue_logs(request: Request):
    path = _dispatcher(request).save_logs()
    return {"path": str(path) if path else None}


def main() -> None:
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        create_app(settings),
        host=settings.api.host,
        port=settings.api.port,
        log_level="debug" if settings.debug else "info",
    )


if __name__ == "__main__":
    main()
