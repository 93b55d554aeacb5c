#!/usr/bin/env python3
"""
FirstFrame Command Line Interface.

Commands:
    - serve: Start the API server
    - derive-address: Print the wallet address of a Telegram user
    - find-identifier: Recover the Telegram user behind a wallet address
    - reconcile: Confirm royalty payments whose settlement timed out
    - check: Verify installation and configuration
    - info: Display system information

Usage:
    firstframe serve [--host HOST] [--port PORT] [--debug] [--production]
    firstframe derive-address 123456789
    firstframe find-identifier 0xabc... --hint 123456789 [--radius 100000]
    firstframe reconcile
    firstframe check
    firstframe info
    firstframe --version
"""

import argparse
import json
import os
import sys

from dotenv import load_dotenv

__version__ = "0.1.0"


def cmd_serve(args):
    """Start the FirstFrame API server."""
    host = args.host or os.getenv("HOST", "0.0.0.0")
    port = args.port or int(os.getenv("PORT", 5000))
    debug = args.debug or os.getenv("FLASK_DEBUG", "").lower() == "true"

    if not args.production:
        from server import run_server

        run_server(host=host, port=port, debug=debug)
        return

    try:
        import gunicorn.app.base
    except ImportError:
        print("Error: gunicorn not installed. Install with: pip install firstframe[production]")
        sys.exit(1)

    class StandaloneApplication(gunicorn.app.base.BaseApplication):
        """Gunicorn application serving an already-built Flask app."""

        def __init__(self, app, options=None):
            self.options = options or {}
            self.application = app
            super().__init__()

        def load_config(self):
            for key, value in self.options.items():
                if key in self.cfg.settings and value is not None:
                    self.cfg.set(key.lower(), value)

        def load(self):
            return self.application

    from monitoring import configure_logging
    from server import create_app

    configure_logging(level=os.getenv("LOG_LEVEL", "INFO"))
    print(f"Starting FirstFrame API server on {host}:{port}")
    options = {
        "bind": f"{host}:{port}",
        # The puzzle session store is per process
        "workers": args.workers or int(os.getenv("WORKERS", 1)),
        "threads": int(os.getenv("THREADS", 8)),
        "worker_class": "gthread",
        "timeout": 180,  # covers the settlement wait
        "accesslog": "-",
        "errorlog": "-",
    }
    StandaloneApplication(create_app(), options).run()


def cmd_derive_address(args):
    from wallet_identity import derive_address

    print(derive_address(args.identifier))
    return 0


def cmd_find_identifier(args):
    from config import AppConfig
    from wallet_identity import find_identifier_for_address, is_valid_address

    if not is_valid_address(args.address):
        print(f"Error: not a wallet address: {args.address}", file=sys.stderr)
        return 2

    radius = args.radius if args.radius is not None else AppConfig.from_env().wallet_search_radius
    found = find_identifier_for_address(args.address, args.hint, radius)
    if found is None:
        print(f"No identifier within {radius} of {args.hint} derives {args.address}")
        return 1
    print(found)
    return 0


def cmd_reconcile(args):
    """Run one reconciliation sweep and print the outcomes."""
    from monitoring import configure_logging
    from server import build_services

    configure_logging(level=os.getenv("LOG_LEVEL", "INFO"))
    services = build_services()
    results = services.payments.reconcile_pending_settlements()
    print(json.dumps({"checked": len(results), "results": results}, indent=2))
    return 0


def cmd_check(args):
    """Check installation and configuration."""
    print("FirstFrame Installation Check")
    print("=" * 40)

    checks = []

    try:
        from server import create_app  # noqa: F401

        checks.append(("Flask API", "OK"))
    except ImportError as e:
        checks.append(("Flask API", f"FAIL: {e}"))

    try:
        from config import AppConfig

        config = AppConfig.from_env()
        checks.append(("Configuration", "OK"))
    except ValueError as e:
        config = None
        checks.append(("Configuration", f"FAIL: {e}"))

    try:
        from storage import get_storage_backend

        storage = get_storage_backend()
        status = "OK" if storage.is_available() else "WARN (not available)"
        checks.append((f"Storage ({storage.__class__.__name__})", status))
    except Exception as e:
        checks.append(("Storage", f"FAIL: {e}"))

    if config is not None:
        checks.append(
            ("Telegram bot token", "OK" if config.telegram_bot_token else "SKIP (not set)")
        )
        checks.append(
            ("Telegram channel", "OK" if config.telegram_channel_id else "SKIP (not set)")
        )

    try:
        import gunicorn  # noqa: F401

        checks.append(("Production server (gunicorn)", "OK"))
    except ImportError:
        checks.append(("Production server (gunicorn)", "SKIP (not installed)"))

    print()
    all_ok = True
    for name, status in checks:
        icon = "✓" if status == "OK" else ("○" if "SKIP" in status or "WARN" in status else "✗")
        print(f"  {icon} {name}: {status}")
        if "FAIL" in status:
            all_ok = False

    print()
    if all_ok:
        print("All checks passed!")
        return 0
    print("Some checks failed. See above for details.")
    return 1


def cmd_info(args):
    """Display system information."""
    import platform

    from config import AppConfig

    config = AppConfig.from_env()

    print("FirstFrame System Information")
    print("=" * 40)
    print(f"Version: {__version__}")
    print(f"Python: {platform.python_version()}")
    print(f"Platform: {platform.platform()}")

    print()
    print("Configuration:")
    print(f"  STORAGE_BACKEND: {config.storage_backend}")
    print(f"  FIRSTFRAME_DATA_DIR: {config.data_dir}")
    print(f"  LEDGER_GATEWAY_URL: {config.ledger_endpoint}")
    print(f"  ROYALTY_TOKEN_ADDRESS: {config.royalty_token_address}")
    print(f"  ROYALTY_TTL_HOURS: {config.royalty_ttl_hours}")
    print(f"  SETTLEMENT_TIMEOUT: {config.settlement_timeout:g}s")
    print(f"  TELEGRAM_BOT_TOKEN: {'configured' if config.telegram_bot_token else 'not set'}")
    print(f"  LOG_LEVEL: {os.getenv('LOG_LEVEL', 'INFO (default)')}")
    print(f"  LOG_FORMAT: {os.getenv('LOG_FORMAT', 'console (default)')}")

    print()
    print("Storage:")
    try:
        from storage import get_storage_backend

        for key, value in get_storage_backend().get_info().items():
            print(f"  {key}: {value}")
    except Exception as e:
        print(f"  Error: {e}")

    return 0


def main():
    """Main CLI entry point."""
    load_dotenv()

    parser = argparse.ArgumentParser(
        prog="firstframe",
        description="FirstFrame - puzzle-gated video unlocks with on-chain royalties",
    )
    parser.add_argument("--version", "-v", action="version", version=f"%(prog)s {__version__}")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    serve_parser = subparsers.add_parser("serve", help="Start the API server")
    serve_parser.add_argument("--host", help="Host to bind to (default: 0.0.0.0)")
    serve_parser.add_argument("--port", type=int, help="Port to bind to (default: 5000)")
    serve_parser.add_argument("--debug", action="store_true", help="Enable debug mode")
    serve_parser.add_argument(
        "--production", action="store_true", help="Use gunicorn for production"
    )
    serve_parser.add_argument("--workers", type=int, help="Number of workers (production mode)")

    derive_parser = subparsers.add_parser(
        "derive-address", help="Print the wallet address of a Telegram user"
    )
    derive_parser.add_argument("identifier", type=int, help="Telegram user id")

    find_parser = subparsers.add_parser(
        "find-identifier", help="Recover the Telegram user behind a wallet address"
    )
    find_parser.add_argument("address", help="Wallet address (0x + 40 hex)")
    find_parser.add_argument("--hint", type=int, required=True, help="Identifier to search around")
    find_parser.add_argument("--radius", type=int, help="Search half-width (default: config)")

    subparsers.add_parser("reconcile", help="Confirm payments whose settlement timed out")
    subparsers.add_parser("check", help="Check installation and configuration")
    subparsers.add_parser("info", help="Display system information")

    args = parser.parse_args()

    if args.command == "serve":
        cmd_serve(args)
    elif args.command == "derive-address":
        sys.exit(cmd_derive_address(args))
    elif args.command == "find-identifier":
        sys.exit(cmd_find_identifier(args))
    elif args.command == "reconcile":
        sys.exit(cmd_reconcile(args))
    elif args.command == "check":
        sys.exit(cmd_check(args))
    elif args.command == "info":
        sys.exit(cmd_info(args))
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
