"""Command-line client for a running SyncBoard server."""

from __future__ import annotations

import argparse
import json
import sys
import time
from pathlib import Path
from typing import Any
from urllib.parse import urlparse

import httpx

CONFIG_FILE = ".syncboard-client.json"
DEFAULT_SERVER = "http://127.0.0.1:8000"
_LOCALHOST_HOSTS = {"localhost", "127.0.0.1", "::1"}


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


def load_config(dir_path: Path) -> dict[str, str]:
    config_path = dir_path / CONFIG_FILE
    if not config_path.exists():
        return {}
    config: dict[str, str] = json.loads(config_path.read_text())
    return config


def save_config(dir_path: Path, config: dict[str, str]) -> None:
    config_path = dir_path / CONFIG_FILE
    config_path.write_text(json.dumps(config, indent=2))


def error_message(response: httpx.Response) -> str:
    """Pull the human message out of an error envelope, falling back to the raw body."""
    try:
        payload = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if "detail" in payload:
            return str(payload["detail"])
    return json.dumps(payload)


class ClientError(Exception):
    """Raised when the server answers with an error status."""

    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(f"{status_code}: {message}")
        self.status_code = status_code
        self.message = message


class SyncBoardClient:
    def __init__(self, server_url: str, timeout: float = 30.0, transport: Any = None) -> None:
        self.server_url = server_url.rstrip("/")
        self.client = httpx.Client(base_url=self.server_url, timeout=timeout, transport=transport)

    def close(self) -> None:
        self.client.close()

    def __enter__(self) -> SyncBoardClient:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        resp = self.client.request(method, url, **kwargs)
        if resp.status_code >= 400:
            raise ClientError(resp.status_code, error_message(resp))
        return resp

    def health(self) -> dict[str, Any]:
        result: dict[str, Any] = self._request("GET", "/api/health").json()
        return result

    def list_boards(self) -> list[dict[str, Any]]:
        boards: list[dict[str, Any]] = self._request("GET", "/api/boards").json()
        return boards

    def execute_board(self, board_id: str) -> dict[str, Any]:
        status: dict[str, Any] = self._request("POST", f"/api/boards/{board_id}/execute").json()
        return status

    def stop_board(self, board_id: str) -> None:
        self._request("POST", f"/api/boards/{board_id}/stop")

    def wait_board(self, board_id: str, timeout: float | None = None) -> dict[str, Any] | None:
        """Block until the board's run ends; None when nothing was running."""
        resp = self._request("GET", f"/api/boards/{board_id}/wait", timeout=timeout)
        if resp.status_code == 204:
            return None
        status: dict[str, Any] = resp.json()
        return status

    def logs_since(self, after_seq: int, tab_id: str = "") -> dict[str, Any]:
        params: dict[str, Any] = {"after_seq": after_seq}
        if tab_id:
            params["tab_id"] = tab_id
        page: dict[str, Any] = self._request("GET", "/api/logs/since", params=params).json()
        return page

    def export_backup(self, options: dict[str, Any]) -> bytes:
        return self._request("POST", "/api/backup/export", json=options).content

    def preview_backup(self, data: bytes, passphrase: str = "") -> dict[str, Any]:
        resp = self._request(
            "POST",
            "/api/backup/preview",
            files={"file": ("backup.nsd", data, "application/octet-stream")},
            data={"passphrase": passphrase},
        )
        preview: dict[str, Any] = resp.json()
        return preview

    def import_backup(
        self,
        data: bytes,
        *,
        overwrite_boards: bool = False,
        overwrite_remotes: bool = False,
        merge_mode: bool = False,
        passphrase: str = "",
    ) -> dict[str, Any]:
        form = {
            "overwrite_boards": str(overwrite_boards).lower(),
            "overwrite_remotes": str(overwrite_remotes).lower(),
            "merge_mode": str(merge_mode).lower(),
            "passphrase": passphrase,
        }
        resp = self._request(
            "POST",
            "/api/backup/import",
            files={"file": ("backup.nsd", data, "application/octet-stream")},
            data=form,
        )
        result: dict[str, Any] = resp.json()
        return result


def format_execution(status: dict[str, Any]) -> list[str]:
    lines = [f"Board {status['board_id']}: {status['status']}"]
    for edge in status.get("edge_statuses", []):
        line = f"  {edge['edge_id']}: {edge['status']}"
        if edge.get("message"):
            line += f" ({edge['message']})"
        lines.append(line)
    return lines


def tail_logs(
    client: SyncBoardClient,
    after_seq: int,
    tab_id: str = "",
    follow: bool = False,
    interval: float = 1.0,
) -> int:
    """Print entries newer than ``after_seq``; returns the last sequence seen."""
    last_seq = after_seq
    while True:
        page = client.logs_since(last_seq, tab_id)
        for entry in page.get("entries", []):
            print(f"[{entry['seq_no']}] {entry['level']:<8} {entry['message']}")
            last_seq = max(last_seq, int(entry["seq_no"]))
        if not follow:
            return last_seq
        time.sleep(interval)


def _run_command(client: SyncBoardClient, args: argparse.Namespace) -> int:
    if args.command == "health":
        print(json.dumps(client.health(), indent=2))
    elif args.command == "boards":
        boards = client.list_boards()
        if not boards:
            print("No boards")
        for board in boards:
            print(
                f"{board['id']}  {board['name']}  "
                f"({len(board.get('nodes', []))} nodes, {len(board.get('edges', []))} edges)"
            )
    elif args.command == "run":
        client.execute_board(args.board_id)
        print(f"Started board {args.board_id}")
        if args.no_wait:
            return 0
        status = client.wait_board(args.board_id, timeout=args.timeout)
        if status is None:
            print("Run already finished")
            return 0
        for line in format_execution(status):
            print(line)
        return 0 if status["status"] == "completed" else 2
    elif args.command == "stop":
        client.stop_board(args.board_id)
        print(f"Stopped board {args.board_id}")
    elif args.command == "logs":
        tail_logs(client, args.since, args.tab, follow=args.follow)
    elif args.command == "export":
        options = {
            "include_boards": not args.no_boards,
            "include_remotes": not args.no_remotes,
            "include_settings": not args.no_settings,
            "exclude_tokens": args.exclude_tokens,
            "passphrase": args.passphrase,
        }
        data = client.export_backup(options)
        Path(args.output).write_bytes(data)
        print(f"Wrote {len(data)} bytes to {args.output}")
    elif args.command == "import":
        data = Path(args.file).read_bytes()
        if args.preview:
            print(json.dumps(client.preview_backup(data, args.passphrase), indent=2))
            return 0
        result = client.import_backup(
            data,
            overwrite_boards=args.overwrite_boards,
            overwrite_remotes=args.overwrite_remotes,
            merge_mode=args.merge,
            passphrase=args.passphrase,
        )
        print(
            f"Boards: {result['boards_added']} added, {result['boards_updated']} updated, "
            f"{result['boards_skipped']} skipped"
        )
        print(
            f"Remotes: {result['remotes_added']} added, {result['remotes_updated']} updated, "
            f"{result['remotes_skipped']} skipped"
        )
        for warning in result.get("warnings", []):
            print(f"  warning: {warning}")
        for error in result.get("errors", []):
            print(f"  error: {error}")
        return 0 if result.get("success", True) else 2
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="syncboard-client",
        description="Control a running SyncBoard server",
    )
    parser.add_argument("--dir", "-d", default=".", help="Config directory (default: current)")
    parser.add_argument("--server", "-s", help="Server URL")
    parser.add_argument(
        "--allow-insecure-http",
        action="store_true",
        help="Allow http:// server URLs for non-localhost hosts",
    )

    subparsers = parser.add_subparsers(dest="command")
    subparsers.add_parser("init", help="Save the server URL to the config directory")
    subparsers.add_parser("health", help="Show server health")
    subparsers.add_parser("boards", help="List boards")

    run = subparsers.add_parser("run", help="Execute a board and wait for it to finish")
    run.add_argument("board_id")
    run.add_argument("--no-wait", action="store_true", help="Return once the run has started")
    run.add_argument("--timeout", type=float, default=None, help="Seconds to wait")

    stop = subparsers.add_parser("stop", help="Cancel a running board")
    stop.add_argument("board_id")

    logs = subparsers.add_parser("logs", help="Print log entries after a sequence number")
    logs.add_argument("--since", type=int, default=0)
    logs.add_argument("--tab", default="")
    logs.add_argument("--follow", "-f", action="store_true")

    export = subparsers.add_parser("export", help="Download a backup file")
    export.add_argument("output")
    export.add_argument("--no-boards", action="store_true")
    export.add_argument("--no-remotes", action="store_true")
    export.add_argument("--no-settings", action="store_true")
    export.add_argument("--exclude-tokens", action="store_true")
    export.add_argument("--passphrase", default="")

    imp = subparsers.add_parser("import", help="Upload a backup file")
    imp.add_argument("file")
    imp.add_argument("--preview", action="store_true", help="Only report what would change")
    imp.add_argument("--overwrite-boards", action="store_true")
    imp.add_argument("--overwrite-remotes", action="store_true")
    imp.add_argument("--merge", action="store_true", help="Keep existing settings")
    imp.add_argument("--passphrase", default="")
    return parser


def main(argv: list[str] | None = None) -> int:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)
    config_dir = Path(args.dir).resolve()

    if args.command is None:
        parser.print_help()
        return 1

    if args.command == "init":
        try:
            server_url = validate_server_url(
                args.server or DEFAULT_SERVER, args.allow_insecure_http
            )
        except ValueError as exc:
            print(f"Error: {exc}")
            return 1
        save_config(config_dir, {"server": server_url})
        print(f"Initialized client config in {config_dir / CONFIG_FILE}")
        return 0

    config = load_config(config_dir)
    try:
        server_url = validate_server_url(
            args.server or config.get("server") or DEFAULT_SERVER, args.allow_insecure_http
        )
    except ValueError as exc:
        print(f"Error: {exc}")
        return 1

    with SyncBoardClient(server_url) as client:
        try:
            return _run_command(client, args)
        except ClientError as exc:
            print(f"Error: {exc.message} (HTTP {exc.status_code})")
            return 1
        except httpx.HTTPError as exc:
            print(f"Error: cannot reach {server_url}: {exc}")
            return 1


def cli_entry() -> None:
    sys.exit(main())


if __name__ == "__main__":
    cli_entry()
