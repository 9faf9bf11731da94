"""Entry point for the title document API server.

The server exposes health and ledger lookups over the configured state
database. ``POST /pipeline`` answers 503 here because running the
pipeline needs OCR and chat services wired in by the embedding
application through :func:`docai.api.app.create_app`.
"""

import argparse

import uvicorn

from docai.api.app import create_app
from docai.state.sql_store import SqlStateStore
from docai.utils.config import load_config
from docai.utils.logger import get_logger, setup_logging

logger = get_logger(__name__)


def main(argv: list[str] | None = None) -> None:
    """Start the FastAPI application server over the configured ledger.

    Args:
        argv: Command-line arguments (defaults to sys.argv).
    """
    config = load_config()
    parser = argparse.ArgumentParser(description="Title document AI API server")
    parser.add_argument("--host", default="0.0.0.0", help="Bind address")
    parser.add_argument("--port", type=int, default=8000, help="Bind port")
    parser.add_argument(
        "--db",
        default=config.state.database_url,
        help=f"Database URL (default: {config.state.database_url})",
    )
    args = parser.parse_args(argv)

    setup_logging(config.log_level)
    store = SqlStateStore(args.db, max_retries=config.state.max_merge_retries)
    logger.info("api.start host=%s port=%d db=%s", args.host, args.port, args.db)
    uvicorn.run(create_app(store), host=args.host, port=args.port)


if __name__ == "__main__":
    main()
