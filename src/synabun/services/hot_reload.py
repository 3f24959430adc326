"""Hot reload of the taxonomy file and connection profiles.

Several processes (the tool server, the admin API, ad-hoc scripts) share one
taxonomy file and one ``.env``. Each process polls both, coalesces bursts of
changes, reloads what changed, recomputes derived views, and publishes a
single zero-payload change event.
"""

import asyncio
import inspect
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Generic, TypeVar

from synabun.core.config import ProfileSource, settings
from synabun.core.logging import get_logger, operation_context
from synabun.services.taxonomy import FileSignature, TaxonomyStore, file_signature

logger = get_logger(__name__)

T = TypeVar("T")

Subscriber = Callable[[], Awaitable[None] | None]

TAXONOMY = "taxonomy"
PROFILES = "profiles"


class ChangeNotifier:
    """Zero-payload pub/sub for "the taxonomy or active connection changed"."""

    def __init__(self) -> None:
        self._subscribers: list[Subscriber] = []

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register ``callback``; returns a function that unregisters it."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    async def publish(self) -> int:
        """Deliver to every current subscriber; returns how many succeeded.

        A subscriber that raises is logged and skipped.
        """
        delivered = 0
        for callback in list(self._subscribers):
            try:
                result = callback()
                if inspect.isawaitable(result):
                    await result
                delivered += 1
            except Exception as e:
                name = getattr(callback, "__qualname__", repr(callback))
                logger.warning(f"Change subscriber {name} failed: {e}")
        return delivered


class Debouncer:
    """Runs ``action`` once after ``delay`` seconds without a new trigger."""

    def __init__(self, delay: float, action: Callable[[], Awaitable[None]]):
        self.delay = delay
        self.action = action
        self._timer: asyncio.Task[None] | None = None
        self._running: set[asyncio.Task[None]] = set()

    @property
    def pending(self) -> bool:
        return self._timer is not None and not self._timer.done()

    def trigger(self) -> None:
        if self._timer is not None:
            self._timer.cancel()

        async def fire() -> None:
            await asyncio.sleep(self.delay)
            # Detach before running so a trigger during the action re-arms instead of cancelling it
            self._timer = None
            task = asyncio.current_task()
            if task is not None:
                self._running.add(task)
            try:
                await self.action()
            finally:
                if task is not None:
                    self._running.discard(task)

        self._timer = asyncio.create_task(fire())

    async def wait(self) -> None:
        """Wait for the armed timer and any in-flight action to finish."""
        while self.pending or self._running:
            tasks = [t for t in (self._timer, *self._running) if t is not None]
            await asyncio.gather(*tasks, return_exceptions=True)

    def cancel(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None


class DerivedView(Generic[T]):
    """A cached value recomputed from live state on every change."""

    def __init__(self, name: str, compute: Callable[[], T]):
        self.name = name
        self._compute = compute
        self._value: T | None = None
        self._ready = False

    @property
    def value(self) -> T:
        if not self._ready:
            self.refresh()
        return self._value  # type: ignore[return-value]

    def refresh(self) -> None:
        try:
            self._value = self._compute()
            self._ready = True
        except Exception as e:
            # Keep serving the previous value
            logger.warning(f"Derived view {self.name} failed to refresh: {e}")


class HotReloadCoordinator:
    """Watches the taxonomy and profile files and publishes settled changes."""

    def __init__(
        self,
        taxonomy: TaxonomyStore,
        profiles: ProfileSource,
        notifier: ChangeNotifier | None = None,
        debounce_ms: int | None = None,
        poll_interval: float | None = None,
    ):
        self.taxonomy = taxonomy
        self.profiles = profiles
        self.notifier = notifier or ChangeNotifier()
        self.poll_interval = poll_interval if poll_interval is not None else settings.poll_interval
        delay = (debounce_ms if debounce_ms is not None else settings.debounce_ms) / 1000
        self.debouncer = Debouncer(delay, self._settle_safely)
        self.views: list[DerivedView] = []
        self._pending: set[str] = set()
        self._seen: dict[str, tuple[Path, FileSignature | None]] = {}
        self._task: asyncio.Task[None] | None = None

    def register_view(self, view: DerivedView) -> DerivedView:
        self.views.append(view)
        return view

    def _watched(self) -> dict[str, Path | None]:
        return {TAXONOMY: self.taxonomy.path, PROFILES: self.profiles.env_path}

    def _baseline(self) -> None:
        for kind, path in self._watched().items():
            if path is not None:
                self._seen[kind] = (path, file_signature(path))

    def notice(self, kind: str) -> None:
        """Record a change of ``kind`` and (re)arm the debounce timer."""
        self._pending.add(kind)
        self.debouncer.trigger()

    def poll_once(self) -> bool:
        """Stat the watched files once; returns whether a change was noticed."""
        noticed = False
        for kind, path in self._watched().items():
            if path is None:
                continue
            signature = file_signature(path)
            previous = self._seen.get(kind)
            self._seen[kind] = (path, signature)
            if previous is None or previous[0] != path:
                # New path after a connection switch; the profile change covers it
                continue
            if previous[1] == signature:
                continue
            if kind == TAXONOMY and self.taxonomy.is_own_write(path, signature):
                continue
            logger.debug("File change noticed", kind=kind, path=str(path))
            self.notice(kind)
            noticed = True
        return noticed

    async def settle(self) -> bool:
        """Apply pending changes; returns whether a change event was published."""
        pending, self._pending = self._pending, set()
        with operation_context("hot_reload.settle", pending=sorted(pending)):
            changed = False
            connection_moved = False

            if PROFILES in pending:
                before_connection = self.profiles.active_connection().fingerprint
                before_embedding = self.profiles.active_embedding()
                self.profiles.reload()
                connection_moved = self.profiles.active_connection().fingerprint != before_connection
                if connection_moved or self.profiles.active_embedding() != before_embedding:
                    changed = True
                    logger.info(
                        "Active profiles changed",
                        connection_id=self.profiles.active_connection().id,
                        embedding_id=self.profiles.active_embedding().id,
                    )

            if connection_moved or TAXONOMY in pending:
                if self.taxonomy.invalidate():
                    changed = True
                    self._baseline()
                else:
                    logger.debug("Taxonomy reload deferred until the next clean write")

            if not changed:
                return False

            for view in self.views:
                view.refresh()
            delivered = await self.notifier.publish()
            logger.info("Change published", subscribers=delivered)
            return True

    async def _settle_safely(self) -> None:
        try:
            await self.settle()
        except Exception as e:
            logger.error(f"Hot reload cycle failed: {e}", exc_info=True)

    async def start(self) -> None:
        if self._task is not None:
            return
        self._baseline()
        self._task = asyncio.create_task(self._run())
        logger.info("Hot reload started", paths=[str(p) for p in self._watched().values() if p is not None])

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.poll_interval)
            try:
                self.poll_once()
            except Exception as e:
                logger.warning(f"Polling watched files failed: {e}")

    async def stop(self) -> None:
        self.debouncer.cancel()
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Hot reload stopped")
