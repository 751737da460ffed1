"""CLI entry point: apply a database setup file to a CouchDB server."""

import argparse
import asyncio
import os
import signal
import sys
from pathlib import Path
from typing import List, Optional

from common.cleanup import CompositeCleanup
from common.constants import CLUSTERS_DATABASE, REPLICATOR_SETUP_ID
from common.logging_config import setup_logging
from couch.client import CouchServer
from couch.synced_document import SyncedDocument
from cli.config import Config, ConfigError, default_config_path
from reconciler.pipeline import setup_database
from reconciler.schemas import ReplicatorSetupDocument
from reconciler.types import DatabaseSetup, SetupOptions

logger = setup_logging('cli', log_level=os.getenv('LOG_LEVEL', 'INFO'))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='couch-setup',
        description='Create CouchDB databases, documents and replication jobs from a config file.'
    )
    parser.add_argument('--config', type=Path, default=None, help='Path to the JSON config file')
    parser.add_argument('--once', action='store_true', help='Apply the setup and exit instead of watching')
    parser.add_argument('--debug', action='store_true', help='Enable debug logging')
    return parser


async def apply_config(
    config: Config,
    server: CouchServer,
    once: bool = False,
    stop: Optional[asyncio.Event] = None
) -> CompositeCleanup:
    """
    Set up every configured database, then keep them maintained until stopped.

    When a current cluster is configured, the topology document is synced
    from the clusters database and used for replication.

    Args:
        config: Loaded configuration
        server: CouchDB server to apply the setup to
        once: Close all handles right after setup
        stop: Event ending the maintenance phase

    Returns:
        The (closed) handle that owned every background task
    """
    disable_watching = config.get_disable_watching() or once
    cleanups = CompositeCleanup()

    try:
        options = SetupOptions(disable_watching=disable_watching)

        current_cluster = config.get_current_cluster()
        if current_cluster is not None:
            topology = SyncedDocument(REPLICATOR_SETUP_ID, ReplicatorSetupDocument)
            cleanups.add(await setup_database(
                server,
                DatabaseSetup(name=CLUSTERS_DATABASE, synced_documents=[topology]),
                SetupOptions(disable_watching=disable_watching)
            ))
            options.current_cluster = current_cluster
            options.replicator_setup = topology

        setups = config.get_databases()
        results = await asyncio.gather(
            *(setup_database(server, setup, options) for setup in setups),
            return_exceptions=True
        )
        errors: List[BaseException] = []
        for setup, result in zip(setups, results):
            if isinstance(result, BaseException):
                logger.error(f"Setup failed for database \"{setup.name}\": {result}")
                errors.append(result)
            else:
                cleanups.add(result)
        if errors:
            raise errors[0]

        logger.info(f"Set up {len(setups)} database(s)")

        if not once:
            stop = stop or asyncio.Event()
            await stop.wait()
    finally:
        cleanups.close()
    return cleanups


async def run(config: Config, once: bool) -> None:
    stop = asyncio.Event()

    if sys.platform != 'win32':
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, stop.set)

    async with CouchServer(config.get_couch_url(), timeout=config.get_timeout()) as server:
        await apply_config(config, server, once=once, stop=stop)
    logger.info("Shutting down")


def main(argv: Optional[List[str]] = None) -> int:
    """Entry point for CLI."""
    args = build_parser().parse_args(argv)

    if args.debug:
        setup_logging('cli', log_level='DEBUG')
        logger.info("Debug logging enabled")

    try:
        config = Config(args.config or default_config_path())
    except ConfigError as e:
        logger.error(str(e))
        return 2

    try:
        asyncio.run(run(config, args.once))
    except KeyboardInterrupt:
        logger.info("Received keyboard interrupt")
    except ConfigError as e:
        logger.error(str(e))
        return 2
    except Exception as e:
        logger.error(f"Setup failed: {e}", exc_info=True)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
