# src/promcheck/exporter.py
from __future__ import annotations
from contextlib import asynccontextmanager
from typing import Callable, Set
import asyncio
import contextlib
import logging
import sys
import threading
import traceback

from fastapi import FastAPI
from starlette.responses import HTMLResponse, PlainTextResponse
import uvicorn

from .config import ExporterSettings
from .errors import PromcheckError
from .metrics import DEFAULT_METRICS_PATH, Metrics, handler_for


log = logging.getLogger("promcheck.exporter")

INDEX_HTML = f"""<html>
<head><title>Promcheck Exporter</title></head>
<body>
<h1>Promcheck Exporter</h1>
<p><a href="{DEFAULT_METRICS_PATH}">see metrics</a></p>
</body>
</html>"""


class PeriodicChecker:
    """Runs a check cycle on a fixed interval.

    A tick that fires while the previous cycle is still running is skipped,
    so cycles never overlap.
    """

    def __init__(self, run_cycle: Callable[[], object], interval_s: float) -> None:
        self._run_cycle = run_cycle
        self.interval_s = interval_s
        self._lock = threading.Lock()
        self.cycles = 0
        self.skipped = 0

    @property
    def running(self) -> bool:
        return self._lock.locked()

    def tick(self) -> bool:
        """Run one cycle unless one is in flight. Returns False when skipped."""
        if not self._lock.acquire(blocking=False):
            self.skipped += 1
            log.warning("previous check cycle still running, skipping tick")
            return False
        try:
            log.info("executing promcheck routine")
            self._run_cycle()
        except PromcheckError as e:
            log.error("error while executing promcheck routine | err=%s", e)
        except Exception:
            log.exception("unexpected error while executing promcheck routine")
        finally:
            self.cycles += 1
            self._lock.release()
        return True

    async def run(self) -> None:
        loop = asyncio.get_running_loop()
        pending: Set[asyncio.Future] = set()
        while True:
            fut = loop.run_in_executor(None, self.tick)
            pending.add(fut)
            fut.add_done_callback(pending.discard)
            await asyncio.sleep(self.interval_s)


def _dump_stacks() -> str:
    frames = sys._current_frames()
    out = []
    for t in threading.enumerate():
        out.append(f"Thread {t.name} (daemon={t.daemon}):")
        frame = frames.get(t.ident) if t.ident is not None else None
        if frame is not None:
            out.extend(line.rstrip("\n") for line in traceback.format_stack(frame))
        out.append("")
    return "\n".join(out)


# ---------- App ----------
def create_app(run_cycle: Callable[[], object], metrics: Metrics, settings: ExporterSettings) -> FastAPI:
    checker = PeriodicChecker(run_cycle, settings.interval_s)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        task = asyncio.create_task(checker.run())
        log.info(
            "exporter start | interval_s=%.1f | profiling=%s | runtime_metrics=%s",
            settings.interval_s, settings.enable_profiling, settings.enable_runtime_metrics,
        )
        try:
            yield
        finally:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
            log.info("exporter shutdown | cycle_running=%s", checker.running)

    app = FastAPI(lifespan=lifespan, docs_url=None, redoc_url=None, openapi_url=None)
    app.state.checker = checker

    @app.get("/", include_in_schema=False)
    async def index():
        return HTMLResponse(INDEX_HTML)

    async def health():
        return PlainTextResponse("OK")

    app.add_api_route("/health", health, methods=["GET"], include_in_schema=False)
    app.add_api_route("/healthz", health, methods=["GET"], include_in_schema=False)

    handler_for(metrics, app)

    if settings.enable_profiling:
        @app.get("/debug/stacks", include_in_schema=False)
        async def stacks():
            return PlainTextResponse(_dump_stacks())

    return app


def run_exporter(run_cycle: Callable[[], object], metrics: Metrics, settings: ExporterSettings) -> None:
    app = create_app(run_cycle, metrics, settings)
    log.info("running http server | addr=%s:%d", settings.host, settings.port)
    # keep the logging configured by the CLI
    uvicorn.run(app, host=settings.host, port=settings.port, log_config=None)
