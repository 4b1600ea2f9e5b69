"""
Letterflow - FastAPI application

Serves the approval/trigger API and, when ``RUN_BACKGROUND_WORKERS`` is set,
runs the approval watchers and trigger monitor alongside it.
"""
import asyncio
from contextlib import asynccontextmanager
from typing import List

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from letterflow import __version__
from letterflow.config import get_settings
from letterflow.dependencies import build_orchestrator, get_queue
from letterflow.middleware.logging_middleware import LoggingMiddleware
from letterflow.routes import approvals, health, triggers
from letterflow.utils.logger import get_logger
from letterflow.workflow.trigger_monitor import TriggerMonitor
from letterflow.workflow.watchers import ApprovalWatcher, NeedsImprovementWatcher, PollingWorker

settings = get_settings()
logger = get_logger(__name__)


async def start_workers(workers: List[PollingWorker]) -> List[asyncio.Task]:
    return [asyncio.create_task(worker.run(), name=worker.name) for worker in workers]


async def stop_workers(workers: List[PollingWorker], tasks: List[asyncio.Task], timeout: float = 10.0) -> None:
    for worker in workers:
        worker.stop()
    _, pending = await asyncio.wait(tasks, timeout=timeout) if tasks else (set(), set())
    for task in pending:
        task.cancel()
    if pending:
        await asyncio.gather(*pending, return_exceptions=True)


@asynccontextmanager
async def lifespan(app: FastAPI):
    workers: List[PollingWorker] = []
    tasks: List[asyncio.Task] = []
    if settings.run_background_workers:
        queue = get_queue()
        restored = await queue.reconcile_async()
        if restored:
            logger.warning(f"Reconciled {len(restored)} duplicated approval records")
        orchestrator = await build_orchestrator(queue)
        workers = [
            ApprovalWatcher(queue, orchestrator),
            NeedsImprovementWatcher(queue, orchestrator),
            TriggerMonitor(queue, orchestrator),
        ]
        tasks = await start_workers(workers)
        logger.info(f"Started {len(workers)} background workers")
    try:
        yield
    finally:
        await stop_workers(workers, tasks)


app = FastAPI(
    title="Letterflow",
    description="Outreach letter workflow with human approval",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(LoggingMiddleware)

app.include_router(health.router)
app.include_router(triggers.router)
app.include_router(approvals.router)


@app.get("/")
async def root():
    return {"message": "Letterflow API", "version": __version__}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=settings.fastapi_host, port=settings.fastapi_port)
