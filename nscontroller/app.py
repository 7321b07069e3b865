"""Application bootstrap for nscontroller.

Wires all components in dependency order and manages the asyncio lifecycle.
Startup order: config → logging → K8s client → cache + controllers
              → watchers → controller loops → REST

Event handlers are registered on the cache before any watcher starts, so
the initial list is delivered to controllers as add notifications and every
existing namespace gets its first pass.

Shutdown runs in reverse: controllers stop dequeuing and finish in-flight
passes, then the REST server, watchers and client connection pool are
closed. Each step's error is logged independently so one failing component
does not keep the rest from shutting down.
"""

from __future__ import annotations

import asyncio
import signal
from typing import TYPE_CHECKING

from nscontroller.config import load_config
from nscontroller.errors import FatalStartupError
from nscontroller.models.config import NSControllerConfig
from nscontroller.observability.logging import get_logger, setup_logging

if TYPE_CHECKING:
    import structlog

    from nscontroller.cache.resource_cache import ResourceCache
    from nscontroller.collector.watcher import ResourceWatcher
    from nscontroller.controller.loop import Controller
    from nscontroller.kube.client import ClusterClient

_SHUTDOWN_GRACE_SECONDS = 15


class _ComponentError(Exception):
    """Raised when a mandatory component fails to start."""

    def __init__(self, component: str, cause: Exception) -> None:
        super().__init__(f"Component '{component}' failed to start: {cause}")
        self.component = component
        self.cause = cause


class NSControllerApp:
    """Application root.  Owns every component and coordinates their lifecycle.

    ``stop()`` is safe to call on an app that was never started or has
    already stopped.
    """

    def __init__(self, config: NSControllerConfig | None = None) -> None:
        self.config = config
        self._client: ClusterClient | None = None
        self._cache: ResourceCache | None = None
        self._controllers: list[Controller] = []
        self._watchers: list[ResourceWatcher] = []
        self._rest_server: object | None = None

        self._stop_event = asyncio.Event()
        self._controller_tasks: list[asyncio.Task[None]] = []
        self._background_tasks: list[asyncio.Task[None]] = []

        self._running = False
        self._stopped = False
        self._log: structlog.stdlib.BoundLogger | None = None

    @property
    def running(self) -> bool:
        return self._running

    # ------------------------------------------------------------------
    # Startup
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start all components in dependency order.

        Raises _ComponentError if a mandatory component cannot start.
        """
        # --- 1. Configuration -------------------------------------------
        if self.config is None:
            self.config = load_config()

        # --- 2. Logging -------------------------------------------------
        setup_logging(self.config.log.level)
        self._log = get_logger("app")
        self._log.info(
            "nscontroller starting",
            version=_nscontroller_version(),
            controllers=list(self.config.controller.enabled),
        )

        # --- 3. Kubernetes client ----------------------------------------
        await self._start_client()

        # --- 4. Cache and controllers -------------------------------------
        self._build_controllers()

        # --- 5. Watchers -------------------------------------------------
        await self._start_watchers()

        # --- 6. Controller loops ------------------------------------------
        self._start_controller_loops()

        # --- 7. REST probes ----------------------------------------------
        await self._start_rest()

        self._running = True
        self._log.info("nscontroller started", port=self.config.api.port)

    async def _start_client(self) -> None:
        assert self._log is not None
        assert self.config is not None
        self._log.debug("starting k8s client")
        try:
            from nscontroller.kube.client import ClusterClient, load_kube_config

            source = await load_kube_config()
            self._client = ClusterClient(request_timeout=self.config.kube.request_timeout)
            self._log.info("k8s client configured", source=source)
        except Exception as exc:
            raise _ComponentError("k8s_client", exc) from exc

    def _build_controllers(self) -> None:
        assert self._log is not None
        assert self.config is not None
        assert self._client is not None
        try:
            from nscontroller.cache.resource_cache import ResourceCache
            from nscontroller.controller.factory import build_controllers

            self._cache = ResourceCache()
            self._controllers = build_controllers(
                self.config.controller.enabled,
                self._cache,
                self._client,
                self.config,
            )
        except Exception as exc:
            raise _ComponentError("controllers", exc) from exc

    async def _start_watchers(self) -> None:
        assert self._log is not None
        assert self.config is not None
        assert self._client is not None
        assert self._cache is not None
        try:
            from nscontroller.collector.watcher import ResourceWatcher
            from nscontroller.controller.factory import required_kinds

            for kind in required_kinds(self.config.controller.enabled):
                watcher = ResourceWatcher(
                    self._client,
                    self._client.list_target(kind),
                    self._cache,
                    resync_seconds=self.config.kube.resync_seconds,
                )
                await watcher.start()
                self._watchers.append(watcher)
            self._log.info("watchers started", kinds=[w.kind for w in self._watchers])
        except Exception as exc:
            raise _ComponentError("watchers", exc) from exc

    def _start_controller_loops(self) -> None:
        assert self.config is not None
        for controller in self._controllers:
            task = asyncio.create_task(
                controller.run(self.config.controller.workers, self._stop_event),
                name=f"controller-{controller.name}",
            )
            self._controller_tasks.append(task)

    async def _start_rest(self) -> None:
        """Start the uvicorn server for probes and metrics."""
        assert self._log is not None
        assert self.config is not None
        try:
            import uvicorn

            from nscontroller.api import build_app

            fastapi_app = build_app(cache=self._cache, controllers=self._controllers)
            uv_config = uvicorn.Config(
                app=fastapi_app,
                host="0.0.0.0",
                port=self.config.api.port,
                log_config=None,  # structlog handles all logging
                access_log=False,
            )
            server = uvicorn.Server(uv_config)
            task = asyncio.create_task(server.serve(), name="rest-server")
            self._background_tasks.append(task)
            self._rest_server = server
            self._log.info("rest api started", port=self.config.api.port)
        except Exception as exc:
            raise _ComponentError("rest", exc) from exc

    # ------------------------------------------------------------------
    # Running
    # ------------------------------------------------------------------

    def request_stop(self) -> None:
        self._stop_event.set()

    async def wait(self) -> None:
        """Block until stop is requested or a controller loop exits.

        Re-raises the error of a controller loop that failed (for example
        FatalStartupError when its caches never synced).
        """
        stop_waiter = asyncio.create_task(self._stop_event.wait(), name="stop-waiter")
        try:
            done, _pending = await asyncio.wait(
                [stop_waiter, *self._controller_tasks],
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            stop_waiter.cancel()
        for task in done:
            if task is not stop_waiter and not task.cancelled() and task.exception() is not None:
                raise task.exception()  # type: ignore[misc]

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    async def stop(self) -> None:
        """Gracefully stop all components in reverse startup order."""
        if self._stopped or self._log is None:
            return
        self._stopped = True
        log = self._log
        log.info("nscontroller shutting down")
        self._running = False

        # Controllers first: no new dequeues, in-flight passes complete.
        self._stop_event.set()
        if self._controller_tasks:
            try:
                await asyncio.wait_for(
                    asyncio.gather(*self._controller_tasks, return_exceptions=True),
                    timeout=_SHUTDOWN_GRACE_SECONDS,
                )
            except TimeoutError:
                log.warning("controllers did not drain in time", timeout=_SHUTDOWN_GRACE_SECONDS)

        if self._rest_server is not None:
            self._rest_server.should_exit = True  # type: ignore[attr-defined]
        for task in reversed(self._background_tasks):
            if not task.done():
                task.cancel()
        if self._background_tasks:
            await asyncio.gather(*self._background_tasks, return_exceptions=True)
        self._background_tasks.clear()

        for watcher in reversed(self._watchers):
            await self._stop_component(f"watcher-{watcher.kind}", watcher)
        await self._stop_component("k8s_client", self._client)

        log.info("nscontroller stopped")

    async def _stop_component(self, name: str, component: object | None) -> None:
        """Await stop()/close() on a component, catching all errors."""
        if component is None:
            return
        log = self._log or get_logger("app")
        stop_fn = getattr(component, "stop", None) or getattr(component, "close", None)
        if stop_fn is None:
            return
        try:
            await asyncio.wait_for(stop_fn(), timeout=_SHUTDOWN_GRACE_SECONDS)
        except TimeoutError:
            log.warning("component stop timed out", component=name, timeout=_SHUTDOWN_GRACE_SECONDS)
        except Exception as exc:
            log.error("component stop raised an error", component=name, error=str(exc))


def _nscontroller_version() -> str:
    from nscontroller import __version__

    return __version__


# ---------------------------------------------------------------------------
# Async entrypoint
# ---------------------------------------------------------------------------


async def main(config: NSControllerConfig | None = None) -> None:
    """Create the app, register OS signals, run until shutdown is requested."""
    app = NSControllerApp(config)
    loop = asyncio.get_running_loop()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, app.request_stop)

    try:
        await app.start()
        await app.wait()
    except (_ComponentError, FatalStartupError) as exc:
        log = get_logger("app")
        log.critical(
            "fatal startup error",
            component=getattr(exc, "component", "controller"),
            error=str(getattr(exc, "cause", exc)),
        )
        await app.stop()
        raise SystemExit(1) from exc
    finally:
        await app.stop()
