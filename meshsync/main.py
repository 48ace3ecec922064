#!/usr/bin/env python3
"""
VPN Mesh Peer Sync - Main Entry Point

Reconciles WireGuard peer records between the cloud peer store and the
on-premises local agent.

Usage:
    python -m meshsync.main                  # One manual sync pass
    python -m meshsync.main --watch          # Auto-sync until interrupted
    python -m meshsync.main --status         # Show engine status
    python -m meshsync.main --history        # Show recent passes
    python -m meshsync.main --clear-history  # Drop the audit trail

Environment Variables Required:
    CLOUD_BASE_URL      - Cloud backend URL (e.g., https://project.example.co)
    CLOUD_API_KEY       - Cloud backend API key

Optional:
    LOCAL_AGENT_URL     - Local agent URL (sync reports "not configured" without it)
    LOCAL_AGENT_TOKEN   - Shared secret for the local agent

See .env.example for all configuration options.
"""

import argparse
import logging
import sys
import time
from dataclasses import replace
from pathlib import Path

# Add project root to path for imports if running as script
if __name__ == "__main__" and __package__ is None:
    PROJECT_ROOT = Path(__file__).parent.parent
    sys.path.insert(0, str(PROJECT_ROOT))

from config.settings import (
    ConfigurationError,
    ConflictResolution,
    Settings,
    SyncConfig,
    SyncDirection,
    load_settings,
    load_sync_config,
)
from meshsync.cloud.client import CloudClient
from meshsync.local.client import LocalAgentClient
from meshsync.storage.kv_store import KeyValueStore
from meshsync.storage.state_store import SyncEvent, SyncStateStore
from meshsync.sync.engine import SyncEngine


def setup_logging(verbose: bool = False, level_name: str = "INFO") -> None:
    """
    Configure logging for the application.

    Args:
        verbose: If True, enable DEBUG level logging
        level_name: Level used when not verbose
    """
    level = logging.DEBUG if verbose else getattr(logging, level_name, logging.INFO)

    # Configure root logger
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=[
            logging.StreamHandler(sys.stdout),
        ],
        force=True,
    )

    # Reduce noise from external libraries
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("requests").setLevel(logging.WARNING)


def parse_args(argv=None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Sync VPN peers between the cloud store and the local agent",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    python -m meshsync.main                              # One sync pass
    python -m meshsync.main --direction cloud_to_local   # One-way pass
    python -m meshsync.main --watch                      # Auto-sync
    python -m meshsync.main --history 10                 # Last 10 passes

For setup instructions, see README.md
        """,
    )

    mode = parser.add_mutually_exclusive_group()

    mode.add_argument(
        "--watch",
        action="store_true",
        help="Run auto-sync on the configured interval until interrupted",
    )

    mode.add_argument(
        "--status",
        action="store_true",
        help="Show sync status without performing sync",
    )

    mode.add_argument(
        "--history",
        nargs="?",
        type=int,
        const=20,
        metavar="N",
        help="Show the N most recent sync passes (default: 20)",
    )

    mode.add_argument(
        "--clear-history",
        action="store_true",
        help="Delete the sync history",
    )

    parser.add_argument(
        "--direction",
        choices=[d.value for d in SyncDirection],
        help="Override the configured sync direction",
    )

    parser.add_argument(
        "--conflict-resolution",
        choices=[c.value for c in ConflictResolution],
        help="Override the configured conflict resolution policy",
    )

    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose/debug logging",
    )

    parser.add_argument(
        "--env",
        type=Path,
        help="Path to .env file (default: .env in current directory)",
    )

    return parser.parse_args(argv)


def apply_overrides(config: SyncConfig, args: argparse.Namespace) -> SyncConfig:
    """Apply command line overrides on top of a loaded SyncConfig."""
    changes = {}
    if args.direction:
        changes["direction"] = SyncDirection(args.direction)
    if args.conflict_resolution:
        changes["conflict_resolution"] = ConflictResolution(args.conflict_resolution)
    return replace(config, **changes) if changes else config


def current_sync_config(settings: Settings, args: argparse.Namespace) -> SyncConfig:
    """
    Read the operator's sync configuration as it stands right now.

    Under --watch auto-sync counts as enabled unless the settings blob
    says otherwise.
    """
    fallback = replace(settings.sync, enabled=True) if args.watch else settings.sync
    config = load_sync_config(settings.storage.sync_config_path, fallback=fallback)
    return apply_overrides(config, args)


def show_status(state_store: SyncStateStore) -> None:
    """
    Display current sync status.

    Args:
        state_store: State store to query
    """
    logger = logging.getLogger(__name__)

    status = state_store.get_status()
    history = state_store.get_history()

    logger.info("=" * 50)
    logger.info("Sync Status")
    logger.info("=" * 50)
    logger.info(f"Running:          {status.is_running}")
    logger.info(f"Last sync:        {status.last_sync or 'never'}")
    logger.info(f"Last error:       {status.last_error or '-'}")
    logger.info(f"Direction:        {status.direction or '-'}")
    logger.info(f"Pending changes:  {status.pending_changes}")
    logger.info(f"History entries:  {len(history)}")
    logger.info("=" * 50)


def show_history(state_store: SyncStateStore, limit: int) -> None:
    """Display the most recent history entries, newest first."""
    logger = logging.getLogger(__name__)

    history = state_store.get_history()[:max(limit, 0)]
    if not history:
        logger.info("No sync history yet")
        return

    for entry in history:
        outcome = "OK  " if entry.success else "FAIL"
        logger.info(
            f"{entry.timestamp} | {outcome} | {entry.direction or '-':<15} | "
            f"{entry.records_synced:>4} records | {entry.duration_ms:>6} ms | {entry.message}"
        )


def log_event(event: SyncEvent, payload) -> None:
    """Subscriber that mirrors engine events into the debug log."""
    logging.getLogger(__name__).debug(f"{event.value}: {payload}")


def main(argv=None) -> int:
    """
    Main entry point.

    Returns:
        Exit code (0 for success, 1 for error)
    """
    args = parse_args(argv)
    setup_logging(verbose=args.verbose)

    logger = logging.getLogger(__name__)

    logger.info("VPN Mesh Peer Sync")
    logger.info("=" * 50)

    # Load configuration
    try:
        settings = load_settings(env_file=args.env)
        setup_logging(verbose=args.verbose, level_name=settings.log_level)
        sync_config = current_sync_config(settings, args)
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        logger.error("Please check your .env file or environment variables")
        logger.error("See .env.example for required configuration")
        return 1

    # Initialize state store
    state_store = SyncStateStore(KeyValueStore(settings.storage.database_path))

    # Handle status-only modes
    if args.status:
        show_status(state_store)
        return 0

    if args.history is not None:
        show_history(state_store, args.history)
        return 0

    if args.clear_history:
        state_store.clear_history()
        return 0

    cloud_client = None
    local_client = None
    engine = None

    try:
        logger.info("Initializing cloud client...")
        cloud_client = CloudClient(
            base_url=settings.cloud.base_url,
            api_key=settings.cloud.api_key,
            access_token=settings.cloud.access_token,
            peers_table=settings.cloud.peers_table,
            timeout=settings.http.timeout_seconds,
            max_retries=settings.http.max_retries,
        )

        logger.info("Initializing local agent client...")
        local_client = LocalAgentClient(
            base_url=settings.local.base_url,
            server_token=settings.local.server_token,
            timeout=settings.http.timeout_seconds,
            max_retries=settings.http.max_retries,
        )

        engine = SyncEngine(
            cloud=cloud_client,
            local=local_client,
            state_store=state_store,
            max_retries=settings.http.max_retries,
            retry_delay=settings.http.retry_delay_seconds,
        )
        engine.subscribe(log_event)

        if args.watch:
            sync_config = replace(sync_config, enabled=True)
            if not engine.start_auto_sync(
                sync_config,
                config_provider=lambda: current_sync_config(settings, args),
            ):
                logger.error(
                    f"Auto-sync needs an interval of at least "
                    f"{SyncConfig.MIN_INTERVAL_SECONDS}s (got {sync_config.interval}s)"
                )
                return 1

            logger.info("Auto-sync running. Press Ctrl+C to stop.")
            # First pass right away; the timer handles the rest
            engine.perform_sync(sync_config)
            while engine.auto_sync_running:
                time.sleep(1)
            return 0

        # Execute sync
        logger.info("Starting synchronization...")
        result = engine.perform_sync(sync_config)

        # Report results
        logger.info("=" * 50)
        logger.info("Sync Summary")
        logger.info("=" * 50)
        logger.info(f"Direction:        {sync_config.direction.value}")
        logger.info(f"Conflict policy:  {sync_config.conflict_resolution.value}")
        logger.info(f"Records synced:   {result.records_synced}")
        logger.info(f"Duration:         {result.duration_ms} ms")
        logger.info(f"Result:           {result.message}")
        logger.info("=" * 50)

        if not result.success:
            logger.warning("Sync did not complete. Check logs above.")
            return 1

        logger.info("Sync completed successfully!")
        return 0

    except KeyboardInterrupt:
        logger.info("Sync interrupted by user")
        return 130
    except Exception as e:
        logger.error(f"Unexpected error: {e}", exc_info=True)
        return 1
    finally:
        # Clean up
        if engine:
            engine.close()
        if cloud_client:
            cloud_client.close()
        if local_client:
            local_client.close()


if __name__ == "__main__":
    sys.exit(main())
