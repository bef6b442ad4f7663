"""
Main application factory for treeserve
"""

import argparse
import logging
import logging.handlers
import os
import sys
from pathlib import Path
from typing import Optional

import uvicorn
from fastapi import FastAPI

from . import __version__
from .config import ConfigManager, ConfigError, load_config
from .models import Config
from .auth import AuthGate
from .tokens import MemoryTokenStore
from .storage_server import StorageServer
from .certs import build_server_ssl_context, CertificateError
from .middleware import setup_middleware
from .ui import setup_ui_routes
from .api import setup_api_routes


logger = logging.getLogger(__name__)


def setup_logging(config: Config, debug: bool = False):
    """Setup logging configuration"""
    log_config = config.logging

    root_logger = logging.getLogger()
    level = logging.DEBUG if debug else getattr(logging, log_config.level.upper(), logging.INFO)
    root_logger.setLevel(level)

    root_logger.handlers.clear()

    if log_config.json:
        formatter = logging.Formatter(
            '{"time":"%(asctime)s","level":"%(levelname)s","logger":"%(name)s","msg":"%(message)s"}'
        )
    else:
        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_config.file:
        log_file = Path(log_config.file)
        log_file.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=log_config.max_size_mb * 1024 * 1024,
            backupCount=log_config.backup_count,
            encoding='utf-8'
        )
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)


def ensure_root(config: Config):
    """Create the served root directory if it does not exist yet"""
    root = config.server.root
    try:
        root.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        logger.error(f"Failed to create root directory {root}: {e}")
        raise
    if not root.is_dir():
        raise NotADirectoryError(f"Root is not a directory: {root}")


def create_app(config: Optional[Config] = None, config_path: Optional[str] = None) -> FastAPI:
    """Create FastAPI application

    When no ready-made ``config`` is passed the YAML file at ``config_path``
    (or ``$TREESERVE_CONFIG``) is loaded and logging is configured from it.
    """

    if config is None:
        config = load_config(config_path)
        setup_logging(config)

    ensure_root(config)

    app = FastAPI(
        title=config.ui.title,
        description="File server for a single directory tree",
        version=__version__,
        docs_url="/docs" if os.getenv("TREESERVE_DEBUG") else None,
        redoc_url="/redoc" if os.getenv("TREESERVE_DEBUG") else None,
    )

    token_store = MemoryTokenStore()

    app.state.config = config
    app.state.token_store = token_store
    app.state.storage = StorageServer(config.server.root)

    setup_middleware(app, AuthGate(config.auth, token_store))

    setup_ui_routes(app)
    setup_api_routes(app)

    @app.get("/healthz")
    async def health_check():
        return {"ok": True, "version": __version__}

    @app.on_event("startup")
    async def startup_event():
        logger.info(f"treeserve serving {config.server.root}")
        logger.info(f"Auth: {'enabled' if config.auth.enabled else 'disabled'}")
        logger.info(f"TLS: {'enabled' if config.server.tls.enabled else 'disabled'}")

    return app


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="treeserve file server")
    parser.add_argument("--config", "-c", default=None, help="Configuration file path")
    parser.add_argument("--host", default=None, help="Address to bind to")
    parser.add_argument("--port", "-p", type=int, default=None, help="Port to listen on")
    parser.add_argument("--dir", "-d", default=None, help="Directory to serve")
    parser.add_argument("--username", default=None, help="Login username (enables auth)")
    parser.add_argument("--password", default=None, help="Login password (enables auth)")
    parser.add_argument(
        "--tls",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Serve over HTTPS",
    )
    parser.add_argument("--cert", default=None, help="TLS certificate file")
    parser.add_argument("--key", default=None, help="TLS private key file")
    parser.add_argument("--debug", action="store_true", help="Enable debug mode")
    return parser


def main(argv=None):
    """Main entry point for running the server"""

    args = build_parser().parse_args(argv)

    if args.debug:
        os.environ["TREESERVE_DEBUG"] = "1"

    manager = ConfigManager(args.config)
    try:
        manager.load_config()
    except ConfigError as e:
        print(f"treeserve: {e}", file=sys.stderr)
        sys.exit(2)

    config = manager.apply_overrides(
        addr=args.host,
        port=args.port,
        root=args.dir,
        tls=args.tls,
        certfile=args.cert,
        keyfile=args.key,
        username=args.username,
        password=args.password,
    )

    setup_logging(config, debug=args.debug)

    try:
        ssl_context = build_server_ssl_context(config.server.tls)
    except CertificateError as e:
        logger.error(f"TLS setup failed: {e}")
        sys.exit(1)

    app = create_app(config)

    server_config = uvicorn.Config(
        app,
        host=config.server.addr,
        port=config.server.port,
        access_log=False,  # AccessLogMiddleware logs requests
        log_config=None,
        server_header=False,
        date_header=False,
    )
    server_config.load()
    if ssl_context is not None:
        server_config.ssl = ssl_context

    scheme = "https" if ssl_context is not None else "http"
    logger.info(f"Listening on {scheme}://{config.server.addr}:{config.server.port}")

    uvicorn.Server(server_config).run()


if __name__ == "__main__":
    main()
