#!/usr/bin/env python
"""Main entry point for the tagnotes HTTP service."""
import argparse
import atexit
import logging
import os
import sys
from pathlib import Path

import uvicorn

from tagnotes.config import config
from tagnotes.models.db_models import init_db
from tagnotes.observability import configure_logging, metrics
from tagnotes.server.api import create_app
from tagnotes.services.auth_gateway import AuthGateway
from tagnotes.services.note_service import NoteService
from tagnotes.storage.blob_store import BlobStore
from tagnotes.storage.note_store import NoteAggregateStore
from tagnotes.storage.user_repository import UserRepository


def parse_args():
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(description="tagnotes HTTP service")
    parser.add_argument(
        "--host",
        help="Interface to bind",
        type=str,
        default=None
    )
    parser.add_argument(
        "--port",
        help="Port to listen on",
        type=int,
        default=None
    )
    parser.add_argument(
        "--database-url",
        help="SQLAlchemy database URL (overrides --database-path)",
        type=str,
        default=None
    )
    parser.add_argument(
        "--database-path",
        help="SQLite database file path",
        type=str,
        default=None
    )
    parser.add_argument(
        "--blob-dir",
        help="Directory for attachment blobs",
        type=str,
        default=None
    )
    parser.add_argument(
        "--log-level",
        help="Logging level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=os.environ.get("TAGNOTES_LOG_LEVEL", "INFO")
    )
    return parser.parse_args()


def update_config(args):
    """Update the global config with command line arguments."""
    if args.host:
        config.host = args.host
    if args.port:
        config.port = args.port
    if args.database_url:
        config.database_url = args.database_url
    if args.database_path:
        config.database_path = Path(args.database_path)
    if args.blob_dir:
        config.blob_dir = Path(args.blob_dir)


def _save_metrics_on_exit():
    """Save metrics to disk on server shutdown."""
    try:
        if metrics.save_metrics():
            logging.getLogger(__name__).info("Metrics saved to disk on shutdown")
    except OSError as e:
        logging.getLogger(__name__).warning(f"Failed to save metrics on shutdown: {e}")


def main():
    """Run the tagnotes HTTP service."""
    args = parse_args()
    update_config(args)

    log_level = getattr(logging, args.log_level.upper(), logging.INFO)
    try:
        log_dir = configure_logging(log_dir=config.log_dir, level=log_level, console=True)
    except OSError as e:
        # Fall back to basic console logging if file logging fails
        logging.basicConfig(level=log_level)
        logging.getLogger(__name__).warning(f"Failed to configure file logging: {e}")
        log_dir = None

    logger = logging.getLogger(__name__)
    if log_dir:
        logger.info(f"Persistent logging enabled: {log_dir}")

    atexit.register(_save_metrics_on_exit)

    # Single engine shared by all repositories
    try:
        engine = init_db()
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        sys.exit(1)

    store = NoteAggregateStore(engine=engine)
    service = NoteService(store=store, blobs=BlobStore())
    auth = AuthGateway(UserRepository(engine=engine))
    app = create_app(service=service, auth=auth)

    logger.info(f"Starting tagnotes on {config.host}:{config.port}")
    uvicorn.run(app, host=config.host, port=config.port, log_level=args.log_level.lower())


if __name__ == "__main__":
    main()
