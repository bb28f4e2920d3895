"""Command-line client for the PharmaPOS bridge server."""

from __future__ import annotations

import argparse
import sys
from typing import Any
from urllib.parse import urlparse

import httpx

DEFAULT_SERVER = "http://localhost:8000"
_LOCALHOST_HOSTS = {"localhost", "127.0.0.1", "::1"}


class ClientError(Exception):
    """The server answered with an error envelope or an unexpected status."""


class PosClient:
    """Thin wrapper over the bridge's HTTP API."""

    def __init__(self, server_url: str, timeout: float = 120.0) -> None:
        self.server_url = server_url.rstrip("/")
        self.client = httpx.Client(base_url=self.server_url, timeout=timeout)

    def close(self) -> None:
        """Close the HTTP client."""
        self.client.close()

    def __enter__(self) -> PosClient:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def _request(self, method: str, url: str, **kwargs: Any) -> dict[str, Any]:
        resp = self.client.request(method, url, **kwargs)
        try:
            body: dict[str, Any] = resp.json()
        except ValueError as exc:
            raise ClientError(f"Unexpected response ({resp.status_code})") from exc
        if resp.status_code >= 400:
            message = body.get("message") or f"Request failed ({resp.status_code})"
            attempted = body.get("attempted")
            if attempted:
                message += "\n  Searched:\n" + "\n".join(f"    {p}" for p in attempted)
            raise ClientError(message)
        return body

    def select(self, folder_name: str, hint_path: str | None = None) -> dict[str, Any]:
        payload: dict[str, Any] = {"folder_name": folder_name}
        if hint_path:
            payload["hint_path"] = hint_path
        return self._request("POST", "/api/folder-selection/select", json=payload)

    def current(self) -> dict[str, Any]:
        return self._request("GET", "/api/folder-selection/current")

    def refresh(self, force: bool = False) -> dict[str, Any]:
        return self._request("POST", "/api/sync/refresh", params={"force": force})

    def sync_status(self) -> dict[str, Any]:
        return self._request("GET", "/api/sync/status")

    def search(
        self,
        term: str | None = None,
        family: str | None = None,
        page: int = 1,
        limit: int = 20,
    ) -> dict[str, Any]:
        params: dict[str, Any] = {"page": page, "limit": limit}
        if term:
            params["search"] = term
        if family:
            params["family"] = family
        return self._request("GET", "/api/articles/search", params=params)

    def check_changes(self) -> dict[str, Any]:
        return self._request("GET", "/api/file-watcher/check-changes")


def validate_server_url(server_url: str, allow_insecure_http: bool = False) -> str:
    """Validate server URL and enforce HTTPS for non-localhost hosts by default."""
    normalized = server_url.strip().rstrip("/")
    parsed = urlparse(normalized)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise ValueError("Server URL must include scheme and host (e.g. https://example.com)")

    hostname = parsed.hostname
    if parsed.scheme == "http" and not allow_insecure_http and hostname not in _LOCALHOST_HOSTS:
        raise ValueError(
            "HTTPS is required for non-localhost servers. "
            "Use --allow-insecure-http only on trusted networks."
        )

    return normalized


def _print_selection(data: dict[str, Any] | None) -> None:
    if not data:
        print("No folder selected.")
        return
    print(f"Folder:   {data['folder_name']}")
    print(f"Database: {data['access_file_path']}")
    print(f"Method:   {data['method']}")
    year = data.get("year") or "-"
    print(f"Period:   {data['quarter']} {year}")
    print(f"Articles: {data['article_count']}")


def _print_sync_result(data: dict[str, Any]) -> None:
    for entry in data.get("files", []):
        line = f"  {entry['outcome']:<8} {entry['path']}"
        if entry.get("records"):
            line += " (" + ", ".join(f"{t}={n}" for t, n in entry["records"].items()) + ")"
        if entry.get("error"):
            line += f": {entry['error']}"
        print(line)


def _print_status(data: dict[str, Any]) -> None:
    scheduler = data.get("scheduler")
    if scheduler is None:
        print("Scheduler: disabled")
    else:
        state = "running" if scheduler["running"] else "stopped"
        print(f"Scheduler: {state}, {scheduler['runs']} run(s)")
        if scheduler.get("last_error"):
            failures = scheduler["consecutive_failures"]
            print(f"  Last error ({failures} in a row): {scheduler['last_error']}")
    pool = data["pool"]
    print(f"Connections: {pool['active']}/{pool['max_connections']}")
    print("Files:")
    for entry in data.get("files", []):
        print(f"  {entry['file_path']}: synced {entry['sync_count']}x, last {entry['last_sync']}")


def _print_articles(data: dict[str, Any]) -> None:
    for article in data.get("articles", []):
        stock = article.get("stock")
        stock_text = "-" if stock is None else f"{stock:g} ({article['stock_status']})"
        print(
            f"  {article['code']:<14} {article['libelle'][:40]:<40} "
            f"{article['price']:>9.2f}  {stock_text}"
        )
    pagination = data["pagination"]
    print(
        f"Page {pagination['current_page']}/{pagination['total_pages']} "
        f"({pagination['total_items']} article(s))"
    )


def _print_changes(data: dict[str, Any]) -> None:
    if not data.get("has_changes"):
        print("No changes detected.")
        return
    for change in data.get("changes", []):
        print(f"  {change['file_type']}: {', '.join(change['changed_fields'])}")
    print(f"Affected: {', '.join(data.get('affected_areas', []))}")


def main() -> None:
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="pharmapos",
        description="Operate a PharmaPOS bridge server",
    )
    parser.add_argument(
        "--server", "-s", default=DEFAULT_SERVER, help=f"Server URL (default: {DEFAULT_SERVER})"
    )
    parser.add_argument(
        "--allow-insecure-http",
        action="store_true",
        help="Allow http:// server URLs for non-localhost hosts",
    )

    subparsers = parser.add_subparsers(dest="command")
    select_parser = subparsers.add_parser("select", help="Select a point-of-sale folder")
    select_parser.add_argument("folder_name", help="Folder name, e.g. 'PdV Centre T2 2024'")
    select_parser.add_argument("--hint", help="Directory expected to hold the folder")
    subparsers.add_parser("current", help="Show the selected folder")
    sync_parser = subparsers.add_parser("sync", help="Sync the selected folder now")
    sync_parser.add_argument("--force", action="store_true", help="Sync unchanged files too")
    subparsers.add_parser("status", help="Show sync, scheduler and connection status")
    search_parser = subparsers.add_parser("search", help="Search articles")
    search_parser.add_argument("term", nargs="?", help="Text contained in the article name")
    search_parser.add_argument("--family", "-f", help="Family code")
    search_parser.add_argument("--page", "-p", type=int, default=1)
    search_parser.add_argument("--limit", "-l", type=int, default=20)
    subparsers.add_parser("changes", help="Check the legacy files for changes")

    args = parser.parse_args()
    if args.command is None:
        parser.print_help()
        return

    try:
        server_url = validate_server_url(args.server, args.allow_insecure_http)
    except ValueError as exc:
        print(f"Error: {exc}")
        sys.exit(1)

    with PosClient(server_url) as client:
        try:
            if args.command == "select":
                body = client.select(args.folder_name, args.hint)
                _print_selection(body.get("data"))
            elif args.command == "current":
                _print_selection(client.current().get("data"))
            elif args.command == "sync":
                body = client.refresh(force=args.force)
                print(body.get("message", ""))
                _print_sync_result(body["data"])
                if not body.get("success", False):
                    sys.exit(1)
            elif args.command == "status":
                _print_status(client.sync_status()["data"])
            elif args.command == "search":
                body = client.search(args.term, args.family, args.page, args.limit)
                _print_articles(body["data"])
            elif args.command == "changes":
                _print_changes(client.check_changes()["data"])
        except ClientError as exc:
            print(f"Error: {exc}")
            sys.exit(1)
        except httpx.HTTPError as exc:
            print(f"Error: cannot reach {server_url}: {exc}")
            sys.exit(1)


if __name__ == "__main__":
    main()
