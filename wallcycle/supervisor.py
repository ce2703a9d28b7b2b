"""Long-running rotation daemon for ``wallcycle serve``."""

from __future__ import annotations

import re
import signal
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional

import structlog
from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from watchfiles import watch

from .app_context import AppContext, Runtime, build_runtime, load_context
from .config import ConfigError
from .controller import RotationResult
from .errors import WallcycleError
from .logging import log_context

JOB_ID = "rotate"


def parse_interval(expression: str) -> int:
    """Convert ``"30m"``, ``"1h30m"`` or ``"45s"`` into seconds."""

    pattern = re.compile(r"(\d+)([smhd])", re.IGNORECASE)
    text = expression.strip()
    total = 0
    pos = 0
    for match in pattern.finditer(text):
        if match.start() != pos:
            raise ValueError(f"Invalid interval expression: {expression}")
        value = int(match.group(1))
        unit = match.group(2).lower()
        if unit == "s":
            total += value
        elif unit == "m":
            total += value * 60
        elif unit == "h":
            total += value * 3600
        elif unit == "d":
            total += value * 86400
        pos = match.end()

    if pos != len(text) or total <= 0:
        raise ValueError(f"Invalid interval expression: {expression}")
    return total


@dataclass
class Supervisor:
    """Rotate wallpapers on an interval while the stored mode is ``rotate``."""

    context: AppContext
    logger: structlog.stdlib.BoundLogger
    runtime_factory: Callable[[AppContext], Runtime] = build_runtime
    _runtime: Runtime = field(init=False, repr=False)
    _scheduler: BackgroundScheduler = field(init=False, repr=False)
    _stop_event: threading.Event = field(init=False, repr=False)
    _hot_reload_thread: Optional[threading.Thread] = field(default=None, init=False, repr=False)
    _jobs_lock: threading.RLock = field(default_factory=threading.RLock, init=False, repr=False)
    _ticks: int = field(default=0, init=False, repr=False)

    def __post_init__(self) -> None:
        self._stop_event = threading.Event()
        self._scheduler = BackgroundScheduler(executors={"default": ThreadPoolExecutor(max_workers=1)})
        self._runtime = self.runtime_factory(self.context)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def run(self, hot_reload: bool = True) -> None:
        """Start the scheduler and block until interrupted."""

        self.logger.info(
            "supervisor.start",
            interval=self.context.global_config.rotation.interval,
            hot_reload=hot_reload,
        )
        self._register_job(immediate=True)
        self._scheduler.start()
        self._install_signal_handlers()

        if hot_reload:
            self.logger.info("supervisor.hot_reload_enabled", watched=str(self.context.paths.global_config))
            self._start_hot_reload_watcher()

        try:
            while not self._stop_event.wait(timeout=1):
                pass
        except KeyboardInterrupt:
            self.logger.info("supervisor.stop", reason="keyboard_interrupt")
        finally:
            self.shutdown()

    def run_tick(self) -> Optional[RotationResult]:
        """Run one scheduled tick; returns ``None`` when skipped or failed.

        Every event logged during the tick, by any component, carries its
        sequence number as ``tick``.
        """

        with self._jobs_lock:
            runtime = self._runtime
            self._ticks += 1
            tick = self._ticks
        with log_context(tick=tick):
            return self._tick(runtime)

    def _tick(self, runtime: Runtime) -> Optional[RotationResult]:
        try:
            with runtime.state_store.lock():
                state = runtime.state_store.load()
        except WallcycleError as exc:
            self.logger.error("supervisor.tick_failed", error=exc.code, message=exc.message)
            return None
        if state.mode != "rotate":
            self.logger.debug("supervisor.tick_skipped", mode=state.mode)
            return None

        try:
            result = runtime.orchestrator.rotate()
        except WallcycleError as exc:
            self.logger.error("supervisor.tick_failed", error=exc.code, message=exc.message)
            return None
        except Exception as exc:  # pragma: no cover - unexpected runtime failure
            self.logger.exception("supervisor.tick_crashed", error=str(exc))
            return None

        # A failed prune does not fail a tick whose wallpaper was applied.
        try:
            runtime.ledger.prune()
        except WallcycleError as exc:
            self.logger.warning("supervisor.prune_failed", error=exc.code, message=exc.message)
        return result

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------
    def _register_job(self, *, immediate: bool = False) -> None:
        expression = self.context.global_config.rotation.interval
        try:
            trigger = IntervalTrigger(seconds=parse_interval(expression))
        except ValueError as exc:
            self.logger.error("supervisor.schedule_invalid", error=str(exc))
            return

        self._scheduler.add_job(
            self.run_tick,
            trigger=trigger,
            id=JOB_ID,
            name="wallcycle:rotate",
            coalesce=True,
            max_instances=1,
            replace_existing=True,
            next_run_time=datetime.now() if immediate else None,
        )
        self.logger.info("supervisor.rotation_scheduled", schedule=str(trigger))

    # ------------------------------------------------------------------
    # Hot reload & lifecycle helpers
    # ------------------------------------------------------------------
    def _start_hot_reload_watcher(self) -> None:
        if self._hot_reload_thread and self._hot_reload_thread.is_alive():
            return

        def _watch() -> None:
            target = str(self.context.paths.global_config)
            for changes in watch(target, raise_interrupt=False, stop_event=self._stop_event):
                self.logger.info("supervisor.config_change_detected", changes=[str(path) for _, path in changes])
                self.reload_configuration()

        self._hot_reload_thread = threading.Thread(target=_watch, name="wallcycle-hot-reload", daemon=True)
        self._hot_reload_thread.start()

    def reload_configuration(self) -> bool:
        """Re-read config.yml, rewire the runtime and reschedule the job."""

        with self._jobs_lock:
            try:
                context = load_context(self.context.paths)
                runtime = self.runtime_factory(context)
            except ConfigError as exc:
                self.logger.error("supervisor.reload_failed", error=str(exc))
                return False

            interval_changed = context.global_config.rotation.interval != self.context.global_config.rotation.interval
            self.context = context
            self._runtime = runtime
            if interval_changed and self._scheduler.running:
                self._register_job()
        self.logger.info("supervisor.reloaded", interval_changed=interval_changed)
        return True

    def _install_signal_handlers(self) -> None:
        for sig in (signal.SIGINT, signal.SIGTERM):
            signal.signal(sig, self._signal_handler)

    def _signal_handler(self, signum, frame) -> None:  # pragma: no cover - OS signal handling
        self.logger.info("supervisor.signal", signal=signum)
        self._stop_event.set()

    def shutdown(self) -> None:
        if not self._stop_event.is_set():
            self._stop_event.set()

        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)

        if self._hot_reload_thread and self._hot_reload_thread.is_alive():
            self._hot_reload_thread.join(timeout=2)

        self.logger.info("supervisor.shutdown")
