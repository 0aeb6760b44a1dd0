"""Command-line entry point for running and initialising the script sharing API."""

from __future__ import annotations

import argparse
import logging
import os
from pathlib import Path
from typing import Sequence

import uvicorn

from .api.settings import ScriptShareSettings
from .assets import AssetStore
from .storage import FileDocumentStore, load_seed_documents

logger = logging.getLogger(__name__)

APP_FACTORY = "scriptshare.api.app:create_app"


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Script sharing API server")
    parser.add_argument(
        "--data-dir",
        type=Path,
        help="Directory holding users.json, scripts.json and config.json. "
        "Defaults to SCRIPTSHARE_DATA_DIR or ./data.",
    )
    parser.add_argument(
        "--upload-dir",
        type=Path,
        help="Directory receiving uploaded images and script files. "
        "Defaults to SCRIPTSHARE_UPLOAD_DIR or ./uploads.",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        help="Logging level (default: SCRIPTSHARE_LOG_LEVEL or INFO).",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    serve = subparsers.add_parser("serve", help="Run the HTTP API with uvicorn.")
    serve.add_argument("--host", default="127.0.0.1", help="Interface to bind.")
    serve.add_argument("--port", type=int, default=3001, help="Port to listen on.")
    serve.add_argument(
        "--reload",
        action="store_true",
        help="Restart the server when source files change.",
    )

    subparsers.add_parser(
        "init-data",
        help="Write the seed documents and upload directories if they are missing.",
    )
    return parser.parse_args(argv)


def _apply_overrides(args: argparse.Namespace) -> ScriptShareSettings:
    # The app factory reads its settings from the environment.
    if args.data_dir is not None:
        os.environ["SCRIPTSHARE_DATA_DIR"] = str(args.data_dir)
    if args.upload_dir is not None:
        os.environ["SCRIPTSHARE_UPLOAD_DIR"] = str(args.upload_dir)
    if args.log_level is not None:
        os.environ["SCRIPTSHARE_LOG_LEVEL"] = args.log_level
    return ScriptShareSettings.from_env()


def init_data(settings: ScriptShareSettings) -> list[str]:
    """Create missing documents and upload directories; return seeded names."""

    store = FileDocumentStore(settings.data_dir)
    created = store.seed(load_seed_documents())
    AssetStore(settings.upload_dir, public_base_url=settings.public_url)
    return created


def main(argv: Sequence[str] | None = None) -> None:
    args = _parse_args(argv)
    try:
        settings = _apply_overrides(args)
    except ValueError as exc:
        print(f"Invalid configuration: {exc}")
        raise SystemExit(2) from exc

    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command == "init-data":
        created = init_data(settings)
        if created:
            print(f"Seeded {', '.join(created)} in '{settings.data_dir}'.")
        else:
            print(f"Data in '{settings.data_dir}' is already initialised.")
        return

    logger.info("Data directory: %s", settings.data_dir)
    logger.info("Upload directory: %s", settings.upload_dir)
    uvicorn.run(
        APP_FACTORY,
        factory=True,
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":  # pragma: no cover - manual invocation
    main()
