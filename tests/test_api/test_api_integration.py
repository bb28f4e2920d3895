"""Integration tests for the API endpoints."""

from __future__ import annotations

import io
import os
from pathlib import Path
from typing import TYPE_CHECKING

import pytest

from tests.conftest import FakeDriver, article, create_test_client

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from httpx import AsyncClient

    from backend.config import Settings

FOLDER = "PdV Nord T2 2024"


@pytest.fixture
def folder(test_settings: Settings, driver: FakeDriver) -> Path:
    """A deployed point-of-sale folder with article and stock databases."""
    path = Path(test_settings.locator_deployment_roots[0]) / FOLDER
    driver.add_database(
        path / "Caiss.mdb",
        {
            "Article": [
                article("A1", "Doliprane 1000", "ANTALG", "2,18"),
                article("A2", "Spasfon", "ANTISP", "3,50"),
                article("A3", "Smecta", "ANTIDIAR", "4"),
            ]
        },
    )
    driver.add_database(
        path / "caiss_facturation.mdb",
        {"MOUVEMENTSTOCK": [{"CodeArticle": "A1", "Quantite": "12"}]},
    )
    return path


@pytest.fixture
async def client(test_settings: Settings, driver: FakeDriver) -> AsyncGenerator[AsyncClient]:
    async with create_test_client(test_settings, driver) as ac:
        yield ac


async def _select(client: AsyncClient) -> dict:
    resp = await client.post("/api/folder-selection/select", json={"folder_name": FOLDER})
    assert resp.status_code == 200, resp.text
    return resp.json()


class TestHealth:
    @pytest.mark.asyncio
    async def test_health(self, client: AsyncClient) -> None:
        resp = await client.get("/api/health")
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "ok"
        assert data["database"] == "ok"
        assert data["scheduler"] == "disabled"
        assert data["legacy_connections"] == 0


class TestFolderSelection:
    @pytest.mark.asyncio
    async def test_select_folder(self, client: AsyncClient, folder: Path) -> None:
        body = await _select(client)

        assert body["success"] is True
        data = body["data"]
        assert data["folder_name"] == FOLDER
        assert data["access_file_path"] == str(folder / "Caiss.mdb")
        assert data["method"] == "direct_access"
        assert data["quarter"] == "T2"
        assert data["year"] == 2024
        assert data["article_count"] == 3
        assert "3 articles" in body["message"]

    @pytest.mark.asyncio
    async def test_select_unknown_folder_lists_attempts(self, client: AsyncClient) -> None:
        resp = await client.post(
            "/api/folder-selection/select", json={"folder_name": "PdV Inconnu"}
        )
        assert resp.status_code == 404
        body = resp.json()
        assert body["success"] is False
        assert "PdV Inconnu" in body["message"]
        assert body["attempted"]
        assert len(body["attempted"]) <= 10
        assert all(path.endswith("Caiss.mdb") for path in body["attempted"])

    @pytest.mark.asyncio
    async def test_select_requires_name(self, client: AsyncClient) -> None:
        resp = await client.post("/api/folder-selection/select", json={"folder_name": ""})
        assert resp.status_code == 422
        body = resp.json()
        assert body["success"] is False
        assert body["errors"][0]["field"] == "folder_name"

    @pytest.mark.asyncio
    async def test_current_without_selection(self, client: AsyncClient) -> None:
        resp = await client.get("/api/folder-selection/current")
        assert resp.status_code == 200
        body = resp.json()
        assert body["data"] is None
        assert body["message"] == "No folder selected"

    @pytest.mark.asyncio
    async def test_current_after_select(self, client: AsyncClient, folder: Path) -> None:
        await _select(client)
        resp = await client.get("/api/folder-selection/current")
        data = resp.json()["data"]
        assert data["folder_name"] == FOLDER
        assert data["selected_at"] is not None

    @pytest.mark.asyncio
    async def test_reset(self, client: AsyncClient, folder: Path) -> None:
        await _select(client)

        resp = await client.delete("/api/folder-selection/reset")
        assert resp.status_code == 200
        assert resp.json()["message"] == "Folder selection cleared"

        health = await client.get("/api/health")
        assert health.json()["legacy_connections"] == 0
        current = await client.get("/api/folder-selection/current")
        assert current.json()["data"] is None

        again = await client.delete("/api/folder-selection/reset")
        assert again.json()["message"] == "No folder was selected"

    @pytest.mark.asyncio
    async def test_global_search(self, client: AsyncClient, folder: Path) -> None:
        resp = await client.get("/api/folder-selection/global-search", params={"max_depth": 5})
        assert resp.status_code == 200
        data = resp.json()["data"]
        assert data["total"] == 1
        assert data["files"][0]["path"] == str(folder / "Caiss.mdb")

    @pytest.mark.asyncio
    async def test_global_search_depth_is_bounded(self, client: AsyncClient) -> None:
        resp = await client.get("/api/folder-selection/global-search", params={"max_depth": 99})
        assert resp.status_code == 422


class TestUpload:
    @pytest.mark.asyncio
    async def test_upload_database(
        self, client: AsyncClient, driver: FakeDriver, test_settings: Settings
    ) -> None:
        original_open = driver.open

        def open_registering(path: Path):  # type: ignore[no-untyped-def]
            driver.tables.setdefault(str(path), {"Article": [article("U1", "Smecta")]})
            return original_open(path)

        driver.open = open_registering  # type: ignore[method-assign]

        resp = await client.post(
            "/api/folder-selection/upload",
            data={"folder_name": "PdV Est T4 2023"},
            files={"caiss_file": ("Caiss.mdb", io.BytesIO(b"Standard Jet DB"))},
        )

        assert resp.status_code == 200, resp.text
        data = resp.json()["data"]
        assert data["method"] == "file_upload"
        assert data["article_count"] == 1
        assert data["quarter"] == "T4"
        stored = list(test_settings.upload_dir.iterdir())
        assert len(stored) == 1
        assert data["access_file_path"] == str(stored[0])

    @pytest.mark.asyncio
    async def test_upload_rejects_other_extensions(self, client: AsyncClient) -> None:
        resp = await client.post(
            "/api/folder-selection/upload",
            data={"folder_name": "PdV"},
            files={"caiss_file": ("Caiss.accdb", io.BytesIO(b"data"))},
        )
        assert resp.status_code == 422
        assert resp.json()["message"] == "Only .mdb files are accepted"

    @pytest.mark.asyncio
    async def test_upload_too_large(self, client: AsyncClient, test_settings: Settings) -> None:
        test_settings.max_upload_size = 8
        resp = await client.post(
            "/api/folder-selection/upload",
            data={"folder_name": "PdV"},
            files={"caiss_file": ("Caiss.mdb", io.BytesIO(b"0123456789"))},
        )
        assert resp.status_code == 413
        assert resp.json()["success"] is False

    @pytest.mark.asyncio
    async def test_unreadable_upload_is_discarded(
        self, client: AsyncClient, test_settings: Settings
    ) -> None:
        resp = await client.post(
            "/api/folder-selection/upload",
            data={"folder_name": "PdV"},
            files={"caiss_file": ("Caiss.mdb", io.BytesIO(b"not a database"))},
        )
        assert resp.status_code == 503
        assert resp.json()["success"] is False
        assert list(test_settings.upload_dir.iterdir()) == []


class TestArticles:
    @pytest.mark.asyncio
    async def test_search_requires_selection(self, client: AsyncClient) -> None:
        resp = await client.get("/api/articles/search")
        assert resp.status_code == 400
        body = resp.json()
        assert body["success"] is False
        assert body["message"].startswith("No folder selected")

    @pytest.mark.asyncio
    async def test_search_with_stock(self, client: AsyncClient, folder: Path) -> None:
        await _select(client)

        resp = await client.get("/api/articles/search", params={"search": "doli"})

        assert resp.status_code == 200
        data = resp.json()["data"]
        assert [a["code"] for a in data["articles"]] == ["A1"]
        first = data["articles"][0]
        assert first["price_cents"] == 218
        assert first["stock"] == 12.0
        assert first["stock_status"] == "medium"
        assert data["pagination"]["total_items"] == 1
        assert data["pagination"]["total_pages"] == 1

    @pytest.mark.asyncio
    async def test_search_pagination(self, client: AsyncClient, folder: Path) -> None:
        await _select(client)

        resp = await client.get("/api/articles/search", params={"page": 2, "limit": 2})

        data = resp.json()["data"]
        assert [a["code"] for a in data["articles"]] == ["A2"]
        pagination = data["pagination"]
        assert pagination["current_page"] == 2
        assert pagination["total_pages"] == 2
        assert pagination["has_prev"] is True
        assert pagination["has_next"] is False

    @pytest.mark.asyncio
    async def test_search_limit_is_validated(self, client: AsyncClient, folder: Path) -> None:
        await _select(client)
        resp = await client.get("/api/articles/search", params={"limit": 500})
        assert resp.status_code == 422
        assert resp.json()["errors"][0]["field"] == "limit"

    @pytest.mark.asyncio
    async def test_families(self, client: AsyncClient, folder: Path) -> None:
        await _select(client)
        resp = await client.get("/api/articles/families")
        assert resp.json()["data"] == ["ANTALG", "ANTIDIAR", "ANTISP"]

    @pytest.mark.asyncio
    async def test_cache_search_builds_cache(
        self, client: AsyncClient, folder: Path, test_settings: Settings
    ) -> None:
        await _select(client)

        resp = await client.get("/api/articles/cache/search", params={"family": "anti"})

        assert resp.status_code == 200
        data = resp.json()["data"]
        assert [a["code"] for a in data["articles"]] == ["A3", "A2"]
        assert data["articles"][1]["price_cents"] == 350
        assert data["articles"][0]["stock"] is None
        assert any(test_settings.cache_dir.iterdir())

    @pytest.mark.asyncio
    async def test_cache_families_and_rebuild(self, client: AsyncClient, folder: Path) -> None:
        await _select(client)

        families = await client.get("/api/articles/cache/families")
        assert families.json()["data"] == ["ANTALG", "ANTIDIAR", "ANTISP"]

        rebuilt = await client.post("/api/articles/cache/rebuild")
        assert rebuilt.status_code == 200
        assert rebuilt.json()["data"] == 3
        assert rebuilt.json()["message"] == "Cache rebuilt with 3 articles"


class TestFileWatcher:
    @pytest.mark.asyncio
    async def test_first_check_records_baseline(self, client: AsyncClient, folder: Path) -> None:
        await _select(client)
        resp = await client.get("/api/file-watcher/check-changes")
        data = resp.json()["data"]
        assert data["has_changes"] is False
        assert resp.json()["message"] == "No changes detected"

    @pytest.mark.asyncio
    async def test_detects_change_and_syncs(self, client: AsyncClient, folder: Path) -> None:
        await _select(client)
        await client.get("/api/file-watcher/check-changes")

        caiss = folder / "Caiss.mdb"
        stat = caiss.stat()
        os.utime(caiss, (stat.st_atime, stat.st_mtime + 10))

        resp = await client.get("/api/file-watcher/check-changes", params={"sync": True})

        data = resp.json()["data"]
        assert data["has_changes"] is True
        assert [c["file_type"] for c in data["changes"]] == ["caiss"]
        assert data["changes"][0]["changed_fields"] == ["modified_time"]
        assert "articles" in data["affected_areas"]
        assert data["synced_files"] == 2

    @pytest.mark.asyncio
    async def test_reset_and_status(self, client: AsyncClient, folder: Path) -> None:
        await _select(client)
        await client.get("/api/file-watcher/check-changes")

        reset = await client.post("/api/file-watcher/reset")
        assert reset.json()["data"]["forgotten"] == 2

        status = await client.get("/api/file-watcher/status")
        entries = {e["file_type"]: e for e in status.json()["data"]}
        assert entries["caiss"]["exists"] is True
        assert entries["frontoffice"]["exists"] is False


class TestSync:
    @pytest.mark.asyncio
    async def test_refresh_then_up_to_date(self, client: AsyncClient, folder: Path) -> None:
        await _select(client)

        first = await client.post("/api/sync/refresh")
        assert first.status_code == 200
        body = first.json()
        assert body["success"] is True
        assert body["message"] == "2 file(s) synced"
        outcomes = {f["file_type"]: f["outcome"] for f in body["data"]["files"]}
        assert outcomes == {"caiss": "synced", "facturation": "synced", "frontoffice": "missing"}

        second = await client.post("/api/sync/refresh")
        assert second.json()["message"] == "Already up to date"

        forced = await client.post("/api/sync/refresh", params={"force": True})
        assert forced.json()["message"] == "2 file(s) synced"

    @pytest.mark.asyncio
    async def test_refresh_reports_failures(
        self, client: AsyncClient, folder: Path, driver: FakeDriver
    ) -> None:
        await _select(client)
        driver.failing_reads.add(str(folder / "caiss_facturation.mdb"))

        resp = await client.post("/api/sync/refresh")

        body = resp.json()
        assert body["success"] is False
        assert body["message"] == "Sync finished with 1 failure(s)"

    @pytest.mark.asyncio
    async def test_status(self, client: AsyncClient, folder: Path) -> None:
        await _select(client)
        await client.post("/api/sync/refresh")

        resp = await client.get("/api/sync/status")

        data = resp.json()["data"]
        assert {entry["folder_name"] for entry in data["files"]} == {FOLDER}
        assert len(data["files"]) == 2
        assert all(entry["sync_count"] == 1 for entry in data["files"])
        assert set(data["file_states"].values()) == {"synced"}
        assert data["scheduler"] is None
        assert data["pool"]["active"] >= 1

    @pytest.mark.asyncio
    async def test_test_connection(self, client: AsyncClient, folder: Path) -> None:
        await _select(client)
        resp = await client.get("/api/sync/test-connection")
        assert resp.status_code == 200
        data = resp.json()["data"]
        assert data["article_count"] == 3
        assert data["latency_ms"] >= 0
