"""Tests for the command-line client."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any
from unittest.mock import patch

import httpx
import pytest

from cli.pos_client import ClientError, PosClient, main, validate_server_url

if TYPE_CHECKING:
    from collections.abc import Callable


def make_client(handler: Callable[[httpx.Request], httpx.Response]) -> PosClient:
    client = PosClient("http://localhost:8000")
    client.client.close()
    client.client = httpx.Client(
        base_url="http://localhost:8000", transport=httpx.MockTransport(handler)
    )
    return client


def envelope(data: Any = None, message: str | None = None, success: bool = True) -> dict:
    return {"success": success, "data": data, "message": message}


SELECTION = {
    "folder_name": "PdV Nord T2 2024",
    "folder_path": "/pdv/PdV Nord T2 2024",
    "access_file_path": "/pdv/PdV Nord T2 2024/Caiss.mdb",
    "method": "direct_access",
    "quarter": "T2",
    "year": 2024,
    "article_count": 3,
    "file_size": 1024,
    "selected_at": None,
}


class TestValidateServerUrl:
    def test_rejects_insecure_http_for_remote_hosts(self) -> None:
        with pytest.raises(ValueError, match="HTTPS is required"):
            validate_server_url("http://example.com")

    def test_allows_https_for_remote_hosts(self) -> None:
        assert validate_server_url("https://example.com/") == "https://example.com"

    def test_allows_http_for_localhost(self) -> None:
        assert validate_server_url("http://localhost:8000") == "http://localhost:8000"

    def test_allows_insecure_http_when_flag_enabled(self) -> None:
        assert (
            validate_server_url("http://example.com:8000", allow_insecure_http=True)
            == "http://example.com:8000"
        )

    def test_rejects_missing_scheme(self) -> None:
        with pytest.raises(ValueError, match="scheme and host"):
            validate_server_url("example.com")


class TestPosClient:
    def test_select_sends_hint(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=envelope(SELECTION))

        with make_client(handler) as client:
            body = client.select("PdV Nord T2 2024", "D:/Apicommerce/PdV")

        assert body["data"]["folder_name"] == "PdV Nord T2 2024"
        assert seen[0].url.path == "/api/folder-selection/select"
        assert json.loads(seen[0].content) == {
            "folder_name": "PdV Nord T2 2024",
            "hint_path": "D:/Apicommerce/PdV",
        }

    def test_search_params(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=envelope({}))

        with make_client(handler) as client:
            client.search("doli", None, page=2, limit=5)

        params = dict(seen[0].url.params)
        assert params == {"page": "2", "limit": "5", "search": "doli"}

    def test_error_envelope_raises_with_locations(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                404,
                json={
                    "success": False,
                    "message": "No readable database found for folder 'X'",
                    "attempted": ["D:/Apicommerce/PdV/X/Caiss.mdb"],
                },
            )

        with make_client(handler) as client, pytest.raises(ClientError) as exc_info:
            client.select("X")

        message = str(exc_info.value)
        assert message.startswith("No readable database found")
        assert "D:/Apicommerce/PdV/X/Caiss.mdb" in message

    def test_non_json_response_raises(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(502, text="Bad Gateway")

        with make_client(handler) as client, pytest.raises(ClientError, match="502"):
            client.current()

    def test_unsuccessful_sync_is_returned(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json=envelope({"files": []}, "failed", success=False))

        with make_client(handler) as client:
            assert client.refresh(force=True)["success"] is False


class TestMain:
    def _run(
        self, argv: list[str], handler: Callable[[httpx.Request], httpx.Response]
    ) -> None:
        with (
            patch("sys.argv", ["pharmapos", *argv]),
            patch("cli.pos_client.PosClient", side_effect=lambda url: make_client(handler)),
        ):
            main()

    def test_select_prints_selection(self, capsys: pytest.CaptureFixture[str]) -> None:
        self._run(
            ["select", "PdV Nord T2 2024"],
            lambda request: httpx.Response(200, json=envelope(SELECTION)),
        )
        out = capsys.readouterr().out
        assert "Folder:   PdV Nord T2 2024" in out
        assert "Period:   T2 2024" in out
        assert "Articles: 3" in out

    def test_current_without_selection(self, capsys: pytest.CaptureFixture[str]) -> None:
        self._run(["current"], lambda request: httpx.Response(200, json=envelope()))
        assert "No folder selected." in capsys.readouterr().out

    def test_search_prints_articles(self, capsys: pytest.CaptureFixture[str]) -> None:
        page = {
            "articles": [
                {
                    "code": "A1",
                    "libelle": "Doliprane 1000",
                    "code_fam": "ANTALG",
                    "price_cents": 218,
                    "price": 2.18,
                    "stock": 12.0,
                    "stock_status": "medium",
                }
            ],
            "pagination": {
                "current_page": 1,
                "total_pages": 1,
                "total_items": 1,
                "items_per_page": 20,
                "has_next": False,
                "has_prev": False,
            },
        }
        self._run(["search", "doli"], lambda request: httpx.Response(200, json=envelope(page)))
        out = capsys.readouterr().out
        assert "Doliprane 1000" in out
        assert "12 (medium)" in out
        assert "Page 1/1 (1 article(s))" in out

    def test_failed_sync_exits_nonzero(self, capsys: pytest.CaptureFixture[str]) -> None:
        result = {
            "folder_name": "PdV",
            "files": [
                {
                    "file_type": "caiss",
                    "path": "/pdv/Caiss.mdb",
                    "outcome": "failed",
                    "records": {},
                    "error": "locked",
                }
            ],
        }

        with pytest.raises(SystemExit) as exc_info:
            self._run(
                ["sync"],
                lambda request: httpx.Response(
                    200, json=envelope(result, "Sync finished with 1 failure(s)", success=False)
                ),
            )

        assert exc_info.value.code == 1
        out = capsys.readouterr().out
        assert "Sync finished with 1 failure(s)" in out
        assert "failed   /pdv/Caiss.mdb: locked" in out

    def test_server_error_exits(self, capsys: pytest.CaptureFixture[str]) -> None:
        with pytest.raises(SystemExit):
            self._run(
                ["changes"],
                lambda request: httpx.Response(
                    400, json={"success": False, "message": "No folder selected."}
                ),
            )
        assert "Error: No folder selected." in capsys.readouterr().out

    def test_unreachable_server_exits(self, capsys: pytest.CaptureFixture[str]) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(SystemExit):
            self._run(["status"], handler)
        assert "cannot reach http://localhost:8000" in capsys.readouterr().out

    def test_insecure_remote_server_is_rejected(self, capsys: pytest.CaptureFixture[str]) -> None:
        with pytest.raises(SystemExit):
            self._run(
                ["--server", "http://pos.example.com", "current"],
                lambda request: httpx.Response(200, json=envelope()),
            )
        assert "HTTPS is required" in capsys.readouterr().out

    def test_no_command_prints_help(self, capsys: pytest.CaptureFixture[str]) -> None:
        self._run([], lambda request: httpx.Response(200, json=envelope()))
        assert "usage: pharmapos" in capsys.readouterr().out
