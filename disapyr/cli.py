"""
Disapyr CLI — entry point for all operations.

Usage:
    disapyr serve                       # Start the API server
    disapyr init-db                     # Create the secrets table
    disapyr store --secret "s3cr3t"     # Store a secret, print its key
    disapyr retrieve --key KEY          # Read a secret (works once)
    disapyr version                     # Show version
"""

from __future__ import annotations

import argparse
import logging
import sys


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="disapyr",
        description="Disapyr — share a secret that can be read exactly once.",
    )
    parser.add_argument("--version", action="store_true", help="Show version and exit")

    subparsers = parser.add_subparsers(dest="command")

    # serve
    serve_parser = subparsers.add_parser("serve", help="Start the API server")
    serve_parser.add_argument("--host", default=None, help="Bind address (default: DISAPYR_HOST)")
    serve_parser.add_argument("--port", type=int, default=None, help="Port (default: DISAPYR_PORT)")
    serve_parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log level",
    )

    # init-db
    subparsers.add_parser("init-db", help="Create the secrets table if missing")

    # store
    store_parser = subparsers.add_parser("store", help="Store a secret")
    store_parser.add_argument("--secret", required=True, help="Secret to store")
    store_parser.add_argument("--server", default=None, help="API server URL")

    # retrieve
    retrieve_parser = subparsers.add_parser("retrieve", help="Retrieve a secret")
    retrieve_parser.add_argument("--key", required=True, help="Key returned by 'store'")
    retrieve_parser.add_argument("--server", default=None, help="API server URL")

    # version
    subparsers.add_parser("version", help="Show version")

    args = parser.parse_args(argv)

    if args.version or args.command == "version":
        from disapyr import __version__

        print(f"disapyr {__version__}")
        return 0

    if args.command == "serve":
        return _cmd_serve(args)
    elif args.command == "init-db":
        return _cmd_init_db()
    elif args.command == "store":
        return _cmd_store(args)
    elif args.command == "retrieve":
        return _cmd_retrieve(args)
    else:
        parser.print_help()
        return 0


def _cmd_serve(args: argparse.Namespace) -> int:
    from pathlib import Path

    try:
        import uvicorn
    except ImportError:
        print("Error: uvicorn is required. Install with: pip install disapyr")
        return 1

    from disapyr.config import get_config

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    cfg = get_config()
    host = args.host or cfg.server.host
    port = args.port or cfg.server.port

    ssl_kwargs: dict[str, str] = {}
    if cfg.server.https_enabled:
        for label, path in (("certificate", cfg.server.cert_file), ("key", cfg.server.key_file)):
            if not Path(path).exists():
                print(f"Error: TLS {label} file not found: {path}")
                print("Set DISAPYR_TLS_CERT / DISAPYR_TLS_KEY, or DISAPYR_HTTPS_ENABLED=false.")
                return 1
        ssl_kwargs = {"ssl_certfile": cfg.server.cert_file, "ssl_keyfile": cfg.server.key_file}

    scheme = "https" if ssl_kwargs else "http"
    print(f"Starting Disapyr on {scheme}://{host}:{port}...")
    uvicorn.run(
        "disapyr.api.app:create_app",
        factory=True,
        host=host,
        port=port,
        log_level=args.log_level.lower(),
        **ssl_kwargs,
    )
    return 0


def _cmd_init_db() -> int:
    from disapyr.config import get_config
    from disapyr.errors import DisapyrError
    from disapyr.vault.store import SecretStore

    cfg = get_config()
    try:
        SecretStore(cfg.vault.enc_key_bytes, cfg.vault.key_len).ensure_schema()
    except DisapyrError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    print(f"Table 'secrets' ready in {cfg.db.name}")
    return 0


def _make_client(server: str | None):
    """Build a VaultClient with a fresh client-credentials token."""
    from disapyr.client import VaultClient, fetch_access_token
    from disapyr.config import get_config

    cfg = get_config()
    token = fetch_access_token(
        cfg.auth.domain,
        cfg.client.client_id,
        cfg.client.client_secret,
        cfg.auth.audience,
        cfg.client.grant_type,
    )
    verify: bool | str = cfg.client.ca_cert or True
    return VaultClient(server or cfg.client.server_url, token, verify=verify)


def _cmd_store(args: argparse.Namespace) -> int:
    import httpx

    from disapyr.client import ClientError
    from disapyr.errors import AuthError

    if not args.secret:
        print("Error: Please provide a secret using the --secret flag.")
        return 1
    try:
        with _make_client(args.server) as client:
            key = client.store(args.secret)
    except (AuthError, ClientError, httpx.HTTPError) as e:
        print(f"API error: {e}", file=sys.stderr)
        return 1
    print(f"Secret stored successfully. Key: {key}")
    return 0


def _cmd_retrieve(args: argparse.Namespace) -> int:
    import httpx

    from disapyr.client import ClientError
    from disapyr.errors import AuthError

    if not args.key:
        print("Error: Please provide a key using the --key flag.")
        return 1
    try:
        with _make_client(args.server) as client:
            secret = client.retrieve(args.key)
    except (AuthError, ClientError, httpx.HTTPError) as e:
        print(f"API error: {e}", file=sys.stderr)
        return 1
    print(f"Retrieved secret: {secret}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
