"""
Interval scheduler for automatic reconciliation passes.

Runs on a daemon thread that waits on a per-start stop event, so a stop
never has to interrupt a pass that is already in flight.
"""

import logging
import threading
from typing import Any, Callable, Optional

from config.settings import SyncConfig

logger = logging.getLogger(__name__)


ConfigProvider = Callable[[], SyncConfig]


class SyncScheduler:
    """
    Fires a reconciliation pass every ``config.interval`` seconds.

    - ``start`` is idempotent: any existing timer is stopped first.
    - ``start`` installs nothing when the config is disabled or the
      interval is below SyncConfig.MIN_INTERVAL_SECONDS.
    - The interval is fixed for the lifetime of one ``start``.
    - ``stop`` cancels the timer only; an in-flight pass runs to the end.
    """

    THREAD_NAME = "meshsync-scheduler"

    def __init__(self, run_pass: Callable[[SyncConfig], Any]):
        """
        Args:
            run_pass: Called with the current SyncConfig on every tick
        """
        self._run_pass = run_pass
        self._lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None
        self._stop_event: Optional[threading.Event] = None

    @property
    def is_running(self) -> bool:
        """Whether a timer is installed."""
        with self._lock:
            return (
                self._thread is not None
                and self._stop_event is not None
                and not self._stop_event.is_set()
            )

    def start(self, config: SyncConfig, config_provider: Optional[ConfigProvider] = None) -> bool:
        """
        Install the timer.

        Args:
            config: Configuration captured at start; fixes the interval
            config_provider: Optional callable re-read on every tick

        Returns:
            True if a timer was installed
        """
        with self._lock:
            self._stop_locked()

            if not config.schedulable:
                logger.info(
                    f"Auto-sync not started (enabled={config.enabled}, "
                    f"interval={config.interval}s)"
                )
                return False

            stop_event = threading.Event()
            thread = threading.Thread(
                target=self._loop,
                args=(config, config_provider, stop_event),
                name=self.THREAD_NAME,
                daemon=True,
            )
            self._stop_event = stop_event
            self._thread = thread
            thread.start()

        logger.info(
            f"Auto-sync started: every {config.interval}s, "
            f"direction={config.direction.value}"
        )
        return True

    def stop(self, wait: bool = False, timeout: Optional[float] = None) -> None:
        """
        Cancel the timer.

        Args:
            wait: Block until the scheduler thread exits (including any
                in-flight pass)
            timeout: Maximum seconds to wait
        """
        with self._lock:
            thread = self._stop_locked()

        if thread is None:
            return

        logger.info("Auto-sync stopped")

        if wait and thread is not threading.current_thread():
            thread.join(timeout=timeout)

    def _stop_locked(self) -> Optional[threading.Thread]:
        thread = self._thread
        if self._stop_event is not None:
            self._stop_event.set()
        self._thread = None
        self._stop_event = None
        return thread

    def _loop(
        self,
        config: SyncConfig,
        config_provider: Optional[ConfigProvider],
        stop_event: threading.Event,
    ) -> None:
        while not stop_event.wait(timeout=config.interval):
            self._tick(config, config_provider)

    def _tick(self, config: SyncConfig, config_provider: Optional[ConfigProvider] = None) -> Any:
        """
        Run one scheduled pass.

        Errors are logged and never stop the timer.
        """
        if config_provider is not None:
            try:
                config = config_provider()
            except Exception as e:
                logger.error(f"Could not read sync configuration, skipping tick: {e}")
                return None

        if not config.enabled:
            logger.debug("Auto-sync disabled in current configuration, skipping tick")
            return None

        try:
            return self._run_pass(config)
        except Exception as e:
            logger.error(f"Scheduled sync failed: {e}", exc_info=True)
            return None
