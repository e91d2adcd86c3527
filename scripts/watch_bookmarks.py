#!/usr/bin/env python3
"""Watch a user's bookmarks as they change.

This script signs in with an existing access token, prints the current
bookmark list and then reprints it every time the live change feed
delivers an insert or delete. Feed status changes are printed as they
happen so reconnects and the retry ceiling can be observed.

Usage
-----
Set environment variables and run::

    export MARKS_BASE_URL="https://db.example.com"
    export MARKS_API_KEY="public-anon-key"
    export MARKS_USER_ID="..."
    export MARKS_ACCESS_TOKEN="..."
    python scripts/watch_bookmarks.py

Options::

    --add TITLE URL     Add a bookmark before watching
    --delete ID         Delete a bookmark before watching
    --once              Print the list and exit
    --json              Print snapshots as JSON lines
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from collections.abc import Sequence
from pathlib import Path

# Allow running from repo root without installing the package.
_src = Path(__file__).resolve().parent.parent / "src"
if _src.is_dir():
    sys.path.insert(0, str(_src))

from pymarks import (  # noqa: E402
    Bookmark,
    BookmarkClient,
    MarksConfig,
    MarksError,
    Session,
    SessionHolder,
    Severity,
    SubscriptionStatus,
)

_LOG = logging.getLogger("watch_bookmarks")


class _PrintNotifier:
    def notify(self, message: str, severity: Severity) -> None:
        print(f"[{severity.value}] {message}", file=sys.stderr)


def _render(snapshot: Sequence[Bookmark], *, json_mode: bool) -> None:
    if json_mode:
        rows = [record.model_dump(mode="json") for record in snapshot]
        print(json.dumps(rows, ensure_ascii=False), flush=True)
        return
    print(f"\n── {len(snapshot)} bookmark(s) ──")
    for record in snapshot:
        print(f"  {record.created_at:%Y-%m-%d %H:%M}  {record.title}  ({record.hostname})  id={record.id}")
    sys.stdout.flush()


def _render_status(status: SubscriptionStatus) -> None:
    print(f"[feed] {status.value}", file=sys.stderr)


async def main() -> int:
    parser = argparse.ArgumentParser(description="Print a user's bookmarks and follow live changes.")
    parser.add_argument("--user-id", default=os.environ.get("MARKS_USER_ID"), help="Signed-in user id")
    parser.add_argument("--token", default=os.environ.get("MARKS_ACCESS_TOKEN"), help="Access token")
    parser.add_argument("--add", nargs=2, metavar=("TITLE", "URL"), help="Add a bookmark before watching")
    parser.add_argument("--delete", metavar="ID", help="Delete a bookmark before watching")
    parser.add_argument("--once", action="store_true", help="Print the list and exit")
    parser.add_argument("--json", action="store_true", dest="json_mode", help="Print snapshots as JSON lines")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    args = parser.parse_args()

    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s")
    else:
        logging.basicConfig(level=logging.WARNING)

    if not args.user_id or not args.token:
        parser.error("--user-id/--token or MARKS_USER_ID/MARKS_ACCESS_TOKEN are required")

    try:
        config = MarksConfig.from_env(realtime_enabled=not args.once)
    except MarksError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return 2

    sessions = SessionHolder(Session(user_id=args.user_id, access_token=args.token))
    async with BookmarkClient(config, sessions=sessions, notifier=_PrintNotifier()) as client:
        await client.wait_loaded()

        if args.add:
            title, url = args.add
            await client.add_bookmark(title, url)
        if args.delete:
            await client.delete_bookmark(args.delete)

        _render(client.snapshot(), json_mode=args.json_mode)
        if args.once:
            return 0

        client.add_listener(lambda snapshot: _render(snapshot, json_mode=args.json_mode))
        client.add_status_listener(_render_status)
        _LOG.debug("Watching bookmarks for %s, Ctrl-C to stop", args.user_id)
        await asyncio.Event().wait()
    return 0


if __name__ == "__main__":
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        pass
