#!/usr/bin/env python3
"""
UserAdmin -- session-authenticated user administration.

Usage:
  python main.py
  python main.py --host 0.0.0.0 --port 8080
  python main.py --reload
  python main.py --purge-sessions

Environment variables (see core/config.py for the full list):
  SECRET_KEY            Required unless DEBUG=true. At least 32 characters.
  DATABASE_URL          User store connection string (default: SQLite file).
  SESSION_DATABASE_URL  Session store connection string (default: DATABASE_URL).
  SECURE_COOKIES        Set to true when serving over HTTPS.
"""

import argparse

import uvicorn

from core.config import get_settings


def purge_sessions() -> int:
    """Delete expired sessions once and report how many were removed."""
    from auth.sessions import SessionStore

    store = SessionStore(get_settings().session_database_url)
    try:
        removed = store.purge_expired()
    finally:
        store.close()
    print(f"  Purged {removed} expired session(s).")
    return removed


def main() -> None:
    settings = get_settings()
    parser = argparse.ArgumentParser(
        prog="useradmin",
        description="Session-authenticated user administration web app.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py
  python main.py --port 8080
  DEBUG=true python main.py --reload
  python main.py --purge-sessions
        """,
    )
    parser.add_argument(
        "--host",
        default=settings.host,
        help=f"Interface to bind (default: {settings.host})",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=settings.port,
        help=f"Port to listen on (default: {settings.port})",
    )
    parser.add_argument(
        "--reload",
        action="store_true",
        help="Restart the server when source files change (development only)",
    )
    parser.add_argument(
        "--purge-sessions",
        action="store_true",
        help="Delete expired sessions and exit instead of serving",
    )
    args = parser.parse_args()

    if args.purge_sessions:
        purge_sessions()
        return

    print(f"\nUserAdmin -- http://{args.host}:{args.port}\n")
    uvicorn.run("asgi:app", host=args.host, port=args.port, reload=args.reload)


if __name__ == "__main__":
    main()
