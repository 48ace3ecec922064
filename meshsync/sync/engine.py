"""
Peer reconciliation engine.

Orchestrates synchronization between the cloud peer store and the local
agent, records every pass in the status & history store, and drives the
auto-sync scheduler.
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional, Protocol

from config.settings import SyncConfig

from ..cloud.client import CloudAPIError
from ..local.client import LocalAgentError
from ..peers.models import PeerRecord
from ..storage.kv_store import KeyValueStoreError
from ..storage.models import SyncHistoryEntry, SyncStatus
from ..storage.state_store import Subscriber, SyncStateStore
from .diff import ChangeType, SyncAction, compute_actions
from .errors import FetchFailedError, NotConfiguredError, SyncError, WriteFailedError
from .scheduler import ConfigProvider, SyncScheduler

logger = logging.getLogger(__name__)

# Client errors that describe a bad request rather than a transient fault.
_RETRYABLE_CLIENT_STATUSES = (408, 429)


class PeerStore(Protocol):
    """Capability contract shared by the cloud and local adapters."""

    @property
    def is_configured(self) -> bool: ...

    def fetch_all(self) -> list[PeerRecord]: ...

    def create(self, peer: PeerRecord) -> None: ...

    def update(self, peer: PeerRecord) -> None: ...


@dataclass(frozen=True)
class SyncResult:
    """Outcome of one reconciliation pass."""
    success: bool
    message: str
    records_synced: int = 0
    duration_ms: int = 0

    def __str__(self) -> str:
        state = "ok" if self.success else "failed"
        return f"Sync {state}: {self.message} ({self.records_synced} records, {self.duration_ms} ms)"


class SyncEngine:
    """
    Reconciles peer records between the cloud store and the local agent.

    Core principles:
    - The peer id is the only join key between stores
    - A fetch failure aborts the pass before any write
    - A write failure aborts the rest of the pass; earlier writes stay
    - Every pass writes exactly one history entry and never raises
    - Passes never overlap: a pass requested while one is running is skipped

    Usage:
        engine = SyncEngine(
            cloud=cloud_client,
            local=local_client,
            state_store=state_store,
        )

        result = engine.perform_sync(settings.sync)
        print(result)
    """

    def __init__(
        self,
        cloud: PeerStore,
        local: PeerStore,
        state_store: SyncStateStore,
        max_retries: int = 3,
        retry_delay: float = 1.0,
    ):
        """
        Initialize sync engine.

        Args:
            cloud: Cloud peer store adapter
            local: Local agent adapter
            state_store: Status & history store
            max_retries: Attempts per individual write
            retry_delay: Base delay between write attempts in seconds
        """
        self.cloud = cloud
        self.local = local
        self.state_store = state_store
        self.max_retries = max(1, max_retries)
        self.retry_delay = retry_delay

        self._pass_lock = threading.Lock()
        self._scheduler = SyncScheduler(self.perform_sync)

        # A process that died mid-pass leaves is_running persisted
        if self.state_store.get_status().is_running:
            logger.warning("Clearing stale running flag left by an interrupted sync")
            self.state_store.update_status(is_running=False)

    # ============================================================
    # Reconciliation
    # ============================================================

    def perform_sync(self, config: SyncConfig) -> SyncResult:
        """
        Run one reconciliation pass.

        Steps:
        1. Mark the engine running
        2. Abort if the local agent is not configured
        3. Fetch both peer sets
        4. Plan creates and conflict-resolved updates
        5. Apply them in order
        6. Record status and one history entry

        Args:
            config: Sync configuration for this pass

        Returns:
            SyncResult; inspect ``success`` rather than catching exceptions
        """
        if not self._pass_lock.acquire(blocking=False):
            logger.warning("Sync already in progress, skipping this run")
            return SyncResult(success=False, message="Sync already in progress")

        try:
            return self._run_pass(config)
        finally:
            self._pass_lock.release()

    def _run_pass(self, config: SyncConfig) -> SyncResult:
        started = time.monotonic()
        direction = config.direction.value

        logger.info(
            f"Starting sync: direction={direction}, "
            f"conflict_resolution={config.conflict_resolution.value}"
        )

        try:
            self.state_store.update_status(is_running=True, direction=direction)

            if not self.local.is_configured:
                raise NotConfiguredError("Local server not configured")

            cloud_peers = self._fetch(self.cloud, "cloud")
            local_peers = self._fetch(self.local, "local")

            actions = compute_actions(
                cloud_peers,
                local_peers,
                config.direction,
                config.conflict_resolution,
            )
            logger.info(
                f"Planned {len(actions)} writes "
                f"({len(cloud_peers)} cloud peers, {len(local_peers)} local peers)"
            )
            self.state_store.update_status(pending_changes=len(actions))

            synced = self._apply_actions(actions)

        except WriteFailedError as e:
            remaining = len(actions) - e.applied
            if e.applied:
                logger.warning(
                    f"{e.applied} writes were applied before the failure and are kept"
                )
            return self._finish_failure(config, str(e), started, pending_changes=remaining)
        except SyncError as e:
            return self._finish_failure(config, str(e), started)
        except Exception as e:
            logger.error(f"Unexpected sync error: {e}", exc_info=True)
            return self._finish_failure(config, str(e) or "Sync failed", started)

        return self._finish_success(config, synced, started)

    def _fetch(self, store: PeerStore, side: str) -> list[PeerRecord]:
        """Fetch a full peer set; any failure aborts the pass."""
        try:
            return store.fetch_all()
        except (CloudAPIError, LocalAgentError) as e:
            raise FetchFailedError(f"Failed to fetch {side} peers: {e}") from e

    def _apply_actions(self, actions: list[SyncAction]) -> int:
        """
        Apply planned writes in order.

        Returns:
            Number of writes applied

        Raises:
            WriteFailedError: On the first write that still fails after retries
        """
        applied = 0

        for action in actions:
            peer = action.peer
            store = self.local if action.change_type.targets_local else self.cloud
            write = store.create if action.change_type.is_create else store.update
            description = _describe(action)

            try:
                self._retry_operation(lambda: write(peer), description)
            except (CloudAPIError, LocalAgentError) as e:
                raise WriteFailedError(f"Failed to {description}: {e}", applied=applied) from e

            applied += 1
            logger.debug(f"Applied {action}")

        return applied

    def _retry_operation(self, operation: Callable[[], None], description: str) -> None:
        """
        Execute a write with retry logic.

        Args:
            operation: Callable to execute
            description: Human-readable description for logging

        Raises:
            Last exception if all retries failed
        """
        last_error: Optional[Exception] = None

        for attempt in range(self.max_retries):
            try:
                operation()
                return
            except (CloudAPIError, LocalAgentError) as e:
                last_error = e

                # Don't retry requests the store rejected outright
                status = getattr(e, "status_code", None)
                if status and 400 <= status < 500 and status not in _RETRYABLE_CLIENT_STATUSES:
                    raise

                if attempt < self.max_retries - 1:
                    delay = self.retry_delay * (2 ** attempt)  # Exponential backoff
                    logger.warning(
                        f"Retry {attempt + 1}/{self.max_retries} for {description}: {e}. "
                        f"Waiting {delay}s..."
                    )
                    time.sleep(delay)

        logger.error(f"All retries failed for {description}: {last_error}")
        raise last_error

    def _finish_success(self, config: SyncConfig, synced: int, started: float) -> SyncResult:
        duration_ms = _elapsed_ms(started)
        message = f"Synced {synced} peers successfully"
        entry = SyncHistoryEntry.create(
            success=True,
            message=message,
            direction=config.direction.value,
            records_synced=synced,
            duration_ms=duration_ms,
        )

        self._record(
            status_changes={
                "is_running": False,
                "last_sync": entry.timestamp,
                "last_error": None,
                "pending_changes": 0,
            },
            entry=entry,
        )

        logger.info(f"{message} in {duration_ms} ms")
        return SyncResult(
            success=True,
            message=message,
            records_synced=synced,
            duration_ms=duration_ms,
        )

    def _finish_failure(
        self,
        config: SyncConfig,
        message: str,
        started: float,
        **extra_status,
    ) -> SyncResult:
        duration_ms = _elapsed_ms(started)

        self._record(
            status_changes={"is_running": False, "last_error": message, **extra_status},
            entry=SyncHistoryEntry.create(
                success=False,
                message=message,
                direction=config.direction.value,
                records_synced=0,
                duration_ms=duration_ms,
            ),
        )

        logger.error(f"Sync failed after {duration_ms} ms: {message}")
        return SyncResult(success=False, message=message, duration_ms=duration_ms)

    def _record(self, status_changes: dict, entry: SyncHistoryEntry) -> None:
        """Persist the pass outcome; storage faults are logged, not raised."""
        try:
            self.state_store.update_status(**status_changes)
        except KeyValueStoreError as e:
            logger.error(f"Could not record sync status: {e}")

        try:
            self.state_store.append_history(entry)
        except KeyValueStoreError as e:
            logger.error(f"Could not record sync history: {e}")

    # ============================================================
    # Auto-sync
    # ============================================================

    def start_auto_sync(
        self,
        config: SyncConfig,
        config_provider: Optional[ConfigProvider] = None,
    ) -> bool:
        """
        Run passes on a timer.

        Calling again replaces the running timer. Nothing is installed when
        the config is disabled or its interval is under 10 seconds.

        Returns:
            True if a timer was installed
        """
        return self._scheduler.start(config, config_provider)

    def stop_auto_sync(self) -> None:
        """Cancel the timer; a pass already running is not interrupted."""
        self._scheduler.stop()

    @property
    def auto_sync_running(self) -> bool:
        return self._scheduler.is_running

    # ============================================================
    # Status & history
    # ============================================================

    def get_sync_status(self) -> SyncStatus:
        return self.state_store.get_status()

    def get_sync_history(self) -> list[SyncHistoryEntry]:
        """History entries, newest first."""
        return self.state_store.get_history()

    def clear_sync_history(self) -> None:
        self.state_store.clear_history()

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Subscribe to status and history changes; returns an unsubscribe function."""
        return self.state_store.subscribe(callback)

    def close(self) -> None:
        """Stop the scheduler. The adapters are owned by the caller."""
        self._scheduler.stop()

    def __enter__(self) -> "SyncEngine":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


def _describe(action: SyncAction) -> str:
    name = action.peer.name or action.peer.id
    return {
        ChangeType.CREATE_LOCAL: f"push peer {name} to local",
        ChangeType.UPDATE_LOCAL: f"update peer {name} on local",
        ChangeType.CREATE_CLOUD: f"push peer {name} to cloud",
        ChangeType.UPDATE_CLOUD: f"update peer {name} on cloud",
    }[action.change_type]


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)
