"""Tests for the library and enrichment routers (services mocked)."""

from collections.abc import Iterator
from datetime import UTC, datetime
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from soulscan.api.dependencies import (
    get_enrichment_service,
    get_folder_service,
    get_scanner,
)
from soulscan.application.services import CleanupReport, EnrichmentReport, FolderInfo
from soulscan.config import Settings
from soulscan.domain.entities import ScanPhase, ScanProgress, ScanResult, ScanStatus
from soulscan.domain.exceptions import (
    ConfigurationError,
    EntityNotFoundException,
    FolderNotEmptyError,
    ScanAlreadyRunningError,
)
from soulscan.infrastructure.integrations import RetryPolicy
from soulscan.main import create_app


@pytest.fixture
def scanner() -> MagicMock:
    scanner = MagicMock()
    scanner.start_scan = AsyncMock(
        return_value=SimpleNamespace(scan_id="scan-1", folder_path="/music", full_scan=True)
    )
    scanner.remove_folder = AsyncMock(return_value=CleanupReport(deleted_songs=3))
    scanner.reset_library = AsyncMock(return_value=CleanupReport(deleted_songs=10, deleted_artists=2))
    scanner.get_status = MagicMock(return_value=None)
    scanner.cancel_scan = MagicMock(return_value=False)
    scanner.folders = MagicMock()
    scanner.folders.list_folders = AsyncMock(return_value=[])
    scanner.folders.add_folder = AsyncMock()
    scanner.folders.find_by_path = AsyncMock(return_value=None)
    return scanner


@pytest.fixture
def enrichment() -> MagicMock:
    enrichment = MagicMock()
    enrichment.is_running = False
    enrichment.last_report = None
    enrichment.retry_policy = RetryPolicy()
    enrichment.enrich_library = AsyncMock(return_value=EnrichmentReport())
    return enrichment


@pytest.fixture
def app(settings: Settings, scanner: MagicMock, enrichment: MagicMock) -> FastAPI:
    app = create_app(settings)
    app.dependency_overrides[get_scanner] = lambda: scanner
    app.dependency_overrides[get_folder_service] = lambda: scanner.folders
    app.dependency_overrides[get_enrichment_service] = lambda: enrichment
    return app


@pytest.fixture
def client(app: FastAPI) -> Iterator[TestClient]:
    # No "with": the lifespan (real database, http client) is not started
    yield TestClient(app)


def _folder(**overrides) -> FolderInfo:
    data = {
        "id": "f1",
        "path": "/music",
        "name": "music",
        "song_count": 12,
        "created_at": datetime(2024, 1, 1, tzinfo=UTC),
        "last_scanned_at": None,
    }
    data.update(overrides)
    return FolderInfo(**data)


class TestScanEndpoints:
    def test_start_scan_returns_202(self, client: TestClient, scanner: MagicMock) -> None:
        response = client.post("/api/library/scan", json={"path": "/music"})

        assert response.status_code == 202
        assert response.json() == {
            "scan_id": "scan-1",
            "folder_path": "/music",
            "full_scan": True,
            "status": "in_progress",
        }
        scanner.start_scan.assert_awaited_once_with("/music", subpaths=None)

    def test_start_partial_scan(self, client: TestClient, scanner: MagicMock) -> None:
        client.post("/api/library/scan", json={"path": "/music", "subpaths": ["/music/Rock"]})

        scanner.start_scan.assert_awaited_once_with("/music", subpaths=["/music/Rock"])

    def test_second_scan_is_409(self, client: TestClient, scanner: MagicMock) -> None:
        scanner.start_scan.side_effect = ScanAlreadyRunningError("/music")

        response = client.post("/api/library/scan", json={"path": "/music"})

        assert response.status_code == 409
        assert "already running" in response.json()["detail"]

    def test_configuration_error_is_400(self, client: TestClient, scanner: MagicMock) -> None:
        scanner.start_scan.side_effect = ConfigurationError("Artist separators are not configured")

        response = client.post("/api/library/scan", json={"path": "/music"})

        assert response.status_code == 400
        assert response.json() == {"detail": "Artist separators are not configured"}

    def test_missing_path_is_422(self, client: TestClient) -> None:
        response = client.post("/api/library/scan", json={})

        assert response.status_code == 422

    def test_status_unknown_folder_is_404(self, client: TestClient) -> None:
        response = client.get("/api/library/scan/status", params={"path": "/music"})

        assert response.status_code == 404

    def test_status_of_running_scan(self, client: TestClient, scanner: MagicMock) -> None:
        scanner.get_status.return_value = {
            "scan_id": "scan-1",
            "running": True,
            "progress": ScanProgress(phase=ScanPhase.PERSISTING, current=50, total=200, added=40),
            "result": None,
        }

        body = client.get("/api/library/scan/status", params={"path": "/music"}).json()

        assert body["running"] is True
        assert body["result"] is None
        assert body["progress"]["phase"] == "persisting"
        assert body["progress"]["percentage"] == 25.0
        assert body["progress"]["added"] == 40

    def test_status_of_finished_scan(self, client: TestClient, scanner: MagicMock) -> None:
        result = ScanResult(
            scan_id="scan-1", folder_path="/music", full_scan=True,
            status=ScanStatus.COMPLETE, added=3,
        )
        scanner.get_status.return_value = {
            "scan_id": "scan-1", "running": False, "progress": None, "result": result,
        }

        body = client.get("/api/library/scan/status", params={"path": "/music"}).json()

        assert body["progress"] is None
        assert body["result"]["status"] == "complete"
        assert body["result"]["added"] == 3

    def test_status_after_partial_scan_by_subdirectory(
        self, client: TestClient, scanner: MagicMock
    ) -> None:
        result = ScanResult(
            scan_id="scan-2", folder_path="/music", full_scan=False,
            status=ScanStatus.COMPLETE, added=1,
        )
        known = {"/music": {"scan_id": "scan-2", "running": False, "progress": None, "result": result}}
        scanner.get_status.side_effect = known.get
        scanner.folders.find_by_path.return_value = _folder()

        response = client.get("/api/library/scan/status", params={"path": "/music/Rock"})

        assert response.status_code == 200
        assert response.json()["scan_id"] == "scan-2"
        assert response.json()["result"]["full_scan"] is False
        scanner.folders.find_by_path.assert_awaited_once_with("/music/Rock")

    def test_status_outside_every_folder_is_404(
        self, client: TestClient, scanner: MagicMock
    ) -> None:
        response = client.get("/api/library/scan/status", params={"path": "/elsewhere"})

        assert response.status_code == 404
        scanner.folders.find_by_path.assert_awaited_once_with("/elsewhere")

    def test_cancel_without_running_scan_is_404(self, client: TestClient) -> None:
        response = client.post("/api/library/scan/cancel", json={"path": "/music"})

        assert response.status_code == 404

    def test_cancel_running_scan(self, client: TestClient, scanner: MagicMock) -> None:
        scanner.cancel_scan.return_value = True

        response = client.post("/api/library/scan/cancel", json={"path": "/music"})

        assert response.status_code == 200
        assert response.json() == {"cancelled": True, "path": "/music"}
        scanner.cancel_scan.assert_called_once_with("/music")

    def test_cancel_by_subdirectory(self, client: TestClient, scanner: MagicMock) -> None:
        scanner.cancel_scan.side_effect = lambda path: path == "/music"
        scanner.folders.find_by_path.return_value = _folder()

        response = client.post("/api/library/scan/cancel", json={"path": "/music/Rock"})

        assert response.status_code == 200
        assert [c.args for c in scanner.cancel_scan.call_args_list] == [("/music/Rock",), ("/music",)]


class TestFolderEndpoints:
    def test_list_folders(self, client: TestClient, scanner: MagicMock) -> None:
        scanner.folders.list_folders.return_value = [_folder()]

        body = client.get("/api/library/folders").json()

        assert body == [
            {
                "id": "f1",
                "path": "/music",
                "name": "music",
                "song_count": 12,
                "created_at": "2024-01-01T00:00:00+00:00",
                "last_scanned_at": None,
            }
        ]

    def test_add_folder_returns_201(self, client: TestClient, scanner: MagicMock) -> None:
        scanner.folders.add_folder.return_value = _folder(song_count=0, name="Main")

        response = client.post("/api/library/folders", json={"path": "/music", "name": "Main"})

        assert response.status_code == 201
        assert response.json()["name"] == "Main"
        scanner.folders.add_folder.assert_awaited_once_with("/music", "Main")

    def test_add_overlapping_folder_is_400(self, client: TestClient, scanner: MagicMock) -> None:
        scanner.folders.add_folder.side_effect = ConfigurationError("/music/Rock overlaps /music")

        assert client.post("/api/library/folders", json={"path": "/music/Rock"}).status_code == 400

    def test_remove_folder(self, client: TestClient, scanner: MagicMock) -> None:
        response = client.delete("/api/library/folders/f1", params={"cascade": "true"})

        assert response.status_code == 200
        assert response.json()["removed"] == "f1"
        assert response.json()["deleted_songs"] == 3
        scanner.remove_folder.assert_awaited_once_with("f1", cascade=True)

    def test_remove_folder_with_songs_without_cascade_is_409(
        self, client: TestClient, scanner: MagicMock
    ) -> None:
        scanner.remove_folder.side_effect = FolderNotEmptyError("/music", 12)

        response = client.delete("/api/library/folders/f1")

        assert response.status_code == 409
        scanner.remove_folder.assert_awaited_once_with("f1", cascade=False)

    def test_remove_unknown_folder_is_404(self, client: TestClient, scanner: MagicMock) -> None:
        scanner.remove_folder.side_effect = EntityNotFoundException("Folder", "nope")

        assert client.delete("/api/library/folders/nope").status_code == 404

    def test_reset_library(self, client: TestClient) -> None:
        body = client.post("/api/library/reset").json()

        assert body["deleted_songs"] == 10
        assert body["deleted_artists"] == 2


class TestEnrichmentEndpoints:
    def test_run_starts_background_task(self, client: TestClient, enrichment: MagicMock) -> None:
        response = client.post("/api/enrichment/run")

        assert response.status_code == 202
        assert response.json() == {"started": True, "already_running": False}
        enrichment.enrich_library.assert_called_once()

    def test_run_while_running(self, client: TestClient, enrichment: MagicMock) -> None:
        enrichment.is_running = True

        response = client.post("/api/enrichment/run")

        assert response.json() == {"started": False, "already_running": True}
        enrichment.enrich_library.assert_not_called()

    def test_status(self, client: TestClient, enrichment: MagicMock) -> None:
        enrichment.last_report = EnrichmentReport(artists_processed=4, artists_enriched=1)

        body = client.get("/api/enrichment/status").json()

        assert body["running"] is False
        assert body["last_report"]["artists_enriched"] == 1
        assert body["retry_stats"]["calls"] == 0


def test_services_missing_is_503(settings: Settings) -> None:
    client = TestClient(create_app(settings))

    response = client.post("/api/library/scan", json={"path": "/music"})

    assert response.status_code == 503
