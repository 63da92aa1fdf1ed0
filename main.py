#!/usr/bin/env python3
"""
AuthGate -- session and token authentication service.

Usage:
  python main.py
  python main.py --host 0.0.0.0 --port 3000
  python main.py --reload
  python main.py --purge-expired

Environment variables (or .env):
  ACCESS_TOKEN_SECRET, REFRESH_TOKEN_SECRET, SESSION_SECRET
                Required unless DEBUG=true (random per-process secrets).
  DATABASE_URL  SQLAlchemy URL. Default: SQLite file beside auth/store.py.
  CLIENT_URL    SPA origin for OAuth redirects and email links.
  GITHUB_CLIENT_ID / GITHUB_CLIENT_SECRET (likewise GOOGLE_*, DISCORD_*)
                Enables that OAuth provider.
"""

import argparse
import logging

import uvicorn

from auth.store import AccountStore
from core.config import get_settings


def purge_expired() -> int:
    """Clear expired verification and reset tokens once and report the count."""
    store = AccountStore(get_settings().database_url)
    try:
        purged = store.purge_expired_tokens()
    finally:
        store.close()
    print(f"  Purged {purged} expired token(s).")
    return purged


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="authgate",
        description="Session and token authentication with local credentials and OAuth sign-in.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py
  python main.py --port 8080 --reload
  DEBUG=true python main.py
  python main.py --purge-expired
        """,
    )
    parser.add_argument(
        "--host",
        default="127.0.0.1",
        help="Interface to bind (default: 127.0.0.1)",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=3000,
        help="Port to listen on (default: 3000)",
    )
    parser.add_argument(
        "--reload",
        action="store_true",
        help="Restart the server on code changes (development only)",
    )
    parser.add_argument(
        "--log-level",
        choices=["debug", "info", "warning", "error"],
        default="info",
        help="Server log level (default: info)",
    )
    parser.add_argument(
        "--purge-expired",
        action="store_true",
        help="Clear expired verification and reset tokens, then exit",
    )
    args = parser.parse_args()

    if args.purge_expired:
        logging.basicConfig(level=logging.INFO)
        purge_expired()
        return

    uvicorn.run(
        "api.main:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_level=args.log_level,
    )


if __name__ == "__main__":
    main()
