"""
Sync Engine - owns the authoritative library and keeps it in step with the remote store
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Set

from dastan.config import Config
from dastan.errors import SyncError, TransientNetworkError, UnauthorizedError
from dastan.local_store import LocalStore
from dastan.models import Library
from dastan.providers import StorageProvider, build_provider
from dastan.sync_state import ProviderKind, SyncState
from dastan.utils import format_timestamp, now_ms

ErrorListener = Callable[[Exception, str], None]


class PullResult(str, Enum):
    APPLIED = "applied"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class PushOutcome:
    success: bool
    reconnect_required: bool = False
    stale: bool = False
    error: Optional[str] = None


@dataclass
class SyncStatus:
    provider: str
    label: str
    last_synced: Optional[int]
    last_synced_display: str
    is_syncing: bool
    reconnect_required: bool
    book_count: int


class SyncEngine:
    """
    Owns the library and the sync state for one process

    All methods run on a single asyncio event loop. Provider calls are
    blocking requests and run in worker threads; the library itself is only
    touched from the loop, so it needs no locking.

    Every reconfiguration (including the automatic downgrade after an
    authorization failure) bumps a configuration epoch. Responses that arrive
    for an older epoch are discarded instead of being applied.
    """

    def __init__(
        self,
        config: Config,
        store: LocalStore,
        provider_factory: Callable[[SyncState, Dict[str, Any]], StorageProvider] = build_provider,
    ) -> None:
        self.config = config
        self.store = store
        self.logger = logging.getLogger(__name__)
        self._provider_factory = provider_factory
        self._provider_settings = config.get_public_store_config()

        self._state = SyncState.from_settings(store.get_settings(), config.default_room)
        self._provider = self._provider_factory(self._state, self._provider_settings)
        self._epoch = 0
        self._pulls_in_flight: Set[int] = set()
        self._push_lock = asyncio.Lock()
        self._error_listeners: List[ErrorListener] = []
        self.last_error: Optional[Exception] = None
        self.has_loaded = False

        cached = store.load_library()
        self._library: Library = list(cached) if cached else []

        self.logger.info(
            f"SyncEngine initialized ({self._provider.describe()}, {len(self._library)} cached books)"
        )

    # Read-only views
    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def provider(self) -> StorageProvider:
        return self._provider

    @property
    def library(self) -> Library:
        """A copy of the authoritative library; books and chapters are immutable"""
        return list(self._library)

    def status(self) -> SyncStatus:
        return SyncStatus(
            provider=self._state.provider.value,
            label=self._state.label,
            last_synced=self._state.last_synced,
            last_synced_display=format_timestamp(self._state.last_synced, self.config.timezone),
            is_syncing=self._state.is_syncing,
            reconnect_required=self._state.reconnect_required,
            book_count=len(self._library),
        )

    # Error channel
    def add_error_listener(self, listener: ErrorListener) -> None:
        self._error_listeners.append(listener)

    def _report_error(self, error: Exception, context: str) -> None:
        self.last_error = error
        for listener in self._error_listeners:
            try:
                listener(error, context)
            except Exception as e:
                self.logger.error(f"Error listener failed: {str(e)}")

    # Library ownership
    def set_library(self, books: Library) -> None:
        """Replace the authoritative library and cache it locally"""
        self._library = list(books)
        self.store.save_library(self._library)

    async def _call(self, func: Callable, *args) -> Any:
        """Run a blocking provider call off the loop with a bounded timeout"""
        timeout = self.config.request_timeout * 2
        try:
            return await asyncio.wait_for(asyncio.to_thread(func, *args), timeout=timeout)
        except asyncio.TimeoutError as e:
            raise TransientNetworkError(f"Provider call exceeded {timeout:g}s") from e

    # Pull
    async def pull(self) -> PullResult:
        """
        Fetch the remote snapshot and replace the library with it

        Never raises for provider failures: they are logged and turned into
        state transitions. A pull already in flight for the current
        configuration causes this request to be dropped.
        """
        epoch = self._epoch
        if epoch in self._pulls_in_flight:
            self.logger.debug("Pull already in flight, dropping request")
            return PullResult.SKIPPED

        provider = self._provider
        self._pulls_in_flight.add(epoch)
        self._state = self._state.syncing(True)

        try:
            books = await self._call(provider.pull)
        except UnauthorizedError as e:
            self.logger.warning(f"Pull from {provider.describe()} unauthorized: {str(e)}")
            if epoch == self._epoch:
                self._downgrade(e)
            return PullResult.FAILED
        except SyncError as e:
            self.logger.warning(f"Pull from {provider.describe()} failed: {str(e)}")
            return PullResult.FAILED
        except Exception as e:
            self.logger.error(f"Unexpected error pulling from {provider.describe()}: {type(e).__name__}: {str(e)}")
            return PullResult.FAILED
        finally:
            self._pulls_in_flight.discard(epoch)
            self._state = self._state.syncing(self._epoch in self._pulls_in_flight)

        if epoch != self._epoch:
            self.logger.info(f"Discarding stale pull from {provider.describe()}")
            return PullResult.SKIPPED

        if books is None:
            self.logger.debug(f"Nothing to sync yet from {provider.describe()}")
            return PullResult.SKIPPED

        self.set_library(books)
        self._state = self._state.synced(now_ms())
        self.has_loaded = True
        self.logger.info(f"Pulled {len(books)} books from {provider.describe()}")
        return PullResult.APPLIED

    # Push
    async def push(self, books: Library) -> PushOutcome:
        """
        Send a full snapshot to the active provider

        Best effort: the local library is never rolled back. Pushes complete
        in the order they were issued.
        """
        epoch = self._epoch
        provider = self._provider
        snapshot = list(books)

        async with self._push_lock:
            if epoch != self._epoch:
                self.logger.info(f"Skipping push to {provider.describe()}: configuration changed")
                return PushOutcome(success=False, stale=True)

            try:
                await self._call(provider.push, snapshot)
            except UnauthorizedError as e:
                self.logger.warning(f"Push to {provider.describe()} unauthorized: {str(e)}")
                if epoch == self._epoch:
                    self._downgrade(e)
                    return PushOutcome(success=False, reconnect_required=True, error=str(e))
                return PushOutcome(success=False, stale=True, error=str(e))
            except SyncError as e:
                self.logger.warning(f"Push to {provider.describe()} failed: {str(e)}")
                self._report_error(e, "push")
                return PushOutcome(success=False, error=str(e))
            except Exception as e:
                self.logger.error(f"Unexpected error pushing to {provider.describe()}: {type(e).__name__}: {str(e)}")
                self._report_error(e, "push")
                return PushOutcome(success=False, error=str(e))

        if epoch == self._epoch:
            self._state = self._state.synced(now_ms())
        self.logger.debug(f"Pushed {len(snapshot)} books to {provider.describe()}")
        return PushOutcome(success=True)

    # Reconfiguration
    async def reconfigure(
        self,
        provider: ProviderKind,
        room_id: Optional[str] = None,
        token: Optional[str] = None,
        resource_id: Optional[str] = None,
    ) -> PullResult:
        """
        Switch provider, room or credential, then reseed with a fresh pull

        Raises ConfigurationError for invalid parameters; nothing is changed
        in that case.
        """
        new_state = self._state.reconfigured(provider, room_id, token, resource_id)
        new_provider = self._provider_factory(new_state, self._provider_settings)

        self._state = new_state
        self._provider = new_provider
        self._epoch += 1
        self.has_loaded = False
        self._persist_state()
        self.logger.info(f"Sync reconfigured: {new_provider.describe()}")

        return await self.pull()

    def _downgrade(self, error: Exception) -> None:
        """Fall back to local-only mode after the credential was rejected"""
        self.logger.warning("Credential rejected, switching to local-only mode; reconnect required")
        self._state = self._state.downgraded()
        self._provider = self._provider_factory(self._state, self._provider_settings)
        self._epoch += 1
        self._persist_state()
        self._report_error(error, "unauthorized")

    def _persist_state(self) -> None:
        self.store.update_settings(self._state.to_settings())

    # Polling
    async def run(self, interval: Optional[float] = None, stop_event: Optional[asyncio.Event] = None) -> None:
        """Pull at startup and then on a fixed interval until stop_event is set"""
        interval = interval or self.config.sync_interval
        self.logger.info(f"Polling {self._provider.describe()} every {interval:g}s")

        while stop_event is None or not stop_event.is_set():
            try:
                await self.pull()
            except Exception as e:
                self.logger.error(f"Scheduled pull failed: {str(e)}")

            if stop_event is None:
                await asyncio.sleep(interval)
                continue
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass

        self.logger.info("Polling stopped")
