#!/usr/bin/env python3
"""
linkshelf -- admin client for a linkshelf catalog server.

Usage:
  python main.py login
  python main.py status
  python main.py pull --output catalog.json
  python main.py push catalog.json
  python main.py push --draft
  python main.py draft
  python main.py draft --discard
  python main.py logo https://grafana.example.com
  python main.py logout

Environment variables:
  LINKSHELF_URL    Server base URL (default http://localhost:8000).
  LINKSHELF_STATE  Client state database (default ~/.linkshelf/state.db).
                   Holds the session token, never the passphrase.
"""

import argparse
import getpass
import json
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

import requests

from client.api import CatalogClient
from client.config import get_client_settings
from client.logos import LogoCache, find_logo
from client.storage import KeyValueStore
from core.errors import LinkshelfError


def _load_file(path: str) -> Optional[dict[str, Any]]:
    """Read a catalog JSON document.

    Resolves symlinks and verifies the path is a regular file before reading.
    """
    file_path = Path(path).resolve()
    if not file_path.is_file():
        print(f"  [!] '{path}' is not a readable file.")
        return None
    try:
        data = json.loads(file_path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        print(f"  [!] Could not read catalog '{path}': {e}")
        return None
    if not isinstance(data, dict):
        print(f"  [!] '{path}' does not contain a catalog object.")
        return None
    return data


def _write_or_print(data: dict[str, Any], output: Optional[str]) -> None:
    text = json.dumps(data, indent=2, ensure_ascii=False)
    if output:
        Path(output).write_text(text + "\n", encoding="utf-8")
        print(f"  Wrote {output}")
    else:
        print(text)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def cmd_login(client: CatalogClient, args: argparse.Namespace) -> int:
    passphrase = getpass.getpass("Admin passphrase: ")
    if not passphrase:
        print("  [!] Empty passphrase.")
        return 1
    if client.login(passphrase):
        print("  Logged in.")
        return 0
    print("  [!] Invalid passphrase.")
    return 1


def cmd_logout(client: CatalogClient, args: argparse.Namespace) -> int:
    client.logout()
    print("  Logged out.")
    return 0


def cmd_status(client: CatalogClient, args: argparse.Namespace) -> int:
    print(f"  Server: {client.base_url}")
    print(f"  Session: {'valid' if client.check_session() else 'none'}")
    saved_at = client.draft_saved_at()
    if saved_at:
        print(f"  Draft: saved {datetime.fromtimestamp(saved_at):%Y-%m-%d %H:%M:%S}")
    locked = client.throttle.locked_for()
    if locked:
        print(f"  Login locked for {locked}s")
    return 0


def cmd_pull(client: CatalogClient, args: argparse.Namespace) -> int:
    catalog = client.fetch_catalog()
    if catalog is None:
        print("  [!] The server has no catalog yet.")
        return 1
    _write_or_print(catalog, args.output)
    return 0


def cmd_push(client: CatalogClient, args: argparse.Namespace) -> int:
    if args.draft:
        catalog = client.load_draft()
        if catalog is None:
            print("  [!] No local draft to push.")
            return 1
    elif args.file:
        catalog = _load_file(args.file)
        if catalog is None:
            return 1
    else:
        print("  [!] Give a catalog FILE or --draft.")
        return 2

    result = client.save_catalog(catalog)
    if result.durable:
        stats = result.stats
        print(f"  {result.message} ({stats.get('categories', 0)} categories, {stats.get('apps', 0)} apps)")
        return 0
    print(f"  [!] {result.message}")
    return 1


def cmd_draft(client: CatalogClient, args: argparse.Namespace) -> int:
    if args.discard:
        client.discard_draft()
        print("  Draft discarded.")
        return 0
    draft = client.load_draft()
    if draft is None:
        print("  No local draft.")
        return 0
    _write_or_print(draft, args.output)
    return 0


def cmd_logo(client: CatalogClient, args: argparse.Namespace) -> int:
    logo = find_logo(args.url, LogoCache(client.store))
    if logo is None:
        print("  [!] No logo found (or the URL is not allowed).")
        return 1
    print(f"  {logo}")
    return 0


_COMMANDS = {
    "login": cmd_login,
    "logout": cmd_logout,
    "status": cmd_status,
    "pull": cmd_pull,
    "push": cmd_push,
    "draft": cmd_draft,
    "logo": cmd_logo,
}


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="linkshelf",
        description="Admin client for a linkshelf catalog server.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  LINKSHELF_URL=https://tools.example.com python main.py login
  python main.py pull --output catalog.json
  python main.py push catalog.json
  python main.py push --draft
        """,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")
    sub.add_parser("login", help="Exchange the admin passphrase for a session token")
    sub.add_parser("logout", help="Forget the stored session")
    sub.add_parser("status", help="Show session and draft state")

    pull = sub.add_parser("pull", help="Download the current catalog")
    pull.add_argument("--output", metavar="PATH", help="Write to PATH instead of stdout")

    push = sub.add_parser("push", help="Upload a catalog (kept as a local draft if the upload fails)")
    push.add_argument("file", nargs="?", metavar="FILE", help="Catalog JSON file")
    push.add_argument("--draft", action="store_true", help="Upload the saved local draft instead of a file")

    draft = sub.add_parser("draft", help="Show or discard the local draft")
    draft.add_argument("--output", metavar="PATH", help="Write the draft to PATH instead of stdout")
    draft.add_argument("--discard", action="store_true", help="Delete the local draft")

    logo = sub.add_parser("logo", help="Look up an icon URL for a site")
    logo.add_argument("url", metavar="URL")

    args = parser.parse_args()
    if not args.command:
        parser.print_help()
        return

    settings = get_client_settings()
    store = KeyValueStore(Path(settings.state).expanduser())
    client = CatalogClient(settings.url, store, timeout=settings.timeout)
    try:
        code = _COMMANDS[args.command](client, args)
    except LinkshelfError as e:
        print(f"  [!] {e}")
        code = 1
    except requests.RequestException as e:
        print(f"  [!] Could not reach {settings.url}: {e}")
        code = 1
    finally:
        store.close()
    sys.exit(code)


if __name__ == "__main__":
    main()
