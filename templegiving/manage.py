"""Operator commands: run the server, seed admins, reset email settings and
run the pending sweep from cron without going through HTTP.

    python -m templegiving.manage serve --port 8000
    python -m templegiving.manage create-admin trustee@example.com --name Ram
    python -m templegiving.manage cleanup
"""
import argparse
import asyncio
import logging
import os
import sys

import uvicorn

from . import config
from .config import DATABASE_URL, LOG_LEVEL, PENDING_TIMEOUT_SECONDS
from .infra.sql import Database
from .model.orm import Base
from .model.admins import create_admin
from .model.donations import cleanup_stale_pending
from .model.email_settings import reset_settings

log = logging.getLogger("templegiving.manage")


async def _with_session(database_url: str, fn):
    database = Database(database_url)
    try:
        await database.create_all(Base.metadata)
        async with database.session() as db:
            return await fn(db)
    finally:
        await database.dispose()


async def cmd_create_admin(database_url: str, email: str, name: str = "",
                           mobile: str = "") -> int:
    result = await _with_session(database_url, lambda db: create_admin(
        db, {"email": email, "name": name, "mobile": mobile}
    ))
    if not result.ok:
        log.error("create-admin failed: %s", result.error)
        return 1
    log.info("admin %s created", result.value.email)
    return 0


async def cmd_reset_email_settings(database_url: str) -> int:
    result = await _with_session(
        database_url, lambda db: reset_settings(db, updated_by="manage.py")
    )
    if not result.ok:
        log.error("reset-email-settings failed: %s", result.error)
        return 1
    log.info("%d email settings reset to defaults", len(result.value))
    return 0


async def cmd_cleanup(database_url: str, older_than: int) -> int:
    result = await _with_session(
        database_url, lambda db: cleanup_stale_pending(db, older_than)
    )
    if not result.ok:
        log.error("cleanup failed: %s", result.error)
        return 1
    print(result.value)
    return 0


def main(argv=None) -> int:
    logging.basicConfig(
        level=LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ap = argparse.ArgumentParser(prog="templegiving",
                                 description="Donations backend commands")
    ap.add_argument("--database-url", default=DATABASE_URL,
                    help="defaults to $DATABASE_URL")
    sub = ap.add_subparsers(dest="cmd", required=True)

    p = sub.add_parser("serve", help="run the web server")
    p.add_argument("--host", default=os.getenv("HOST", "127.0.0.1"))
    p.add_argument("--port", type=int, default=int(os.getenv("PORT", "8000")))
    p.add_argument("--reload", action="store_true")

    p = sub.add_parser("create-admin", help="add an active admin")
    p.add_argument("email")
    p.add_argument("--name", default="")
    p.add_argument("--mobile", default="")

    sub.add_parser("reset-email-settings",
                   help="write the default receipt email settings")

    p = sub.add_parser("cleanup", help="fail stale pending donations")
    p.add_argument("--older-than", type=int, default=PENDING_TIMEOUT_SECONDS,
                   help="seconds since last update (default: %(default)s)")

    args = ap.parse_args(argv)
    if not args.database_url:
        log.critical("NEED DATABASE_URL (or --database-url)")
        return 1

    if args.cmd == "serve":
        # the server module reads its config on import
        os.environ["DATABASE_URL"] = args.database_url
        config.DATABASE_URL = args.database_url
        uvicorn.run("templegiving.server:app", host=args.host,
                    port=args.port, reload=args.reload)
        return 0
    if args.cmd == "create-admin":
        return asyncio.run(cmd_create_admin(args.database_url, args.email,
                                            args.name, args.mobile))
    if args.cmd == "reset-email-settings":
        return asyncio.run(cmd_reset_email_settings(args.database_url))
    return asyncio.run(cmd_cleanup(args.database_url, args.older_than))


if __name__ == "__main__":
    sys.exit(main())
