"""
HTTP surface - verification, restriction list admin and sync control.
"""

import pytest
from unittest.mock import MagicMock, patch
from fastapi.testclient import TestClient

from src.api.deps import Services, get_services
from src.api.main import app
from src.core.config import CURRENT_TABLE_KEY
from src.core.dao import KVStore, StorageUnavailable
from src.core.status import SANCTIONS, SANEPID
from src.core.sync import SyncEngine, SyncLease, read_metadata


TABLE = {
    "0101": "Live animals → Horses",
    "010121": "Live animals → Horses → Pure-bred",
    "010129": "Live animals → Horses → Other",
    "0201": "Meat → Bovine, fresh",
    "020110": "Meat → Bovine, fresh → Carcasses",
    "7208": "Iron and steel → Flat-rolled",
    "72081000": "Iron and steel → Flat-rolled → In coils",
}


class FakeClient:
    def __init__(self, pages):
        self.pages = pages

    def fetch_page(self, page):
        return self.pages[page]


UPSTREAM_PAGE = {
    "description": "Section I",
    "subgroup": [{"description": "Live animals", "code": "0101", "subgroup": [
        {"description": "Horses", "code": "010121"},
    ]}],
}


@pytest.fixture
def services(tmp_path):
    store = KVStore(str(tmp_path / "api.db"))
    store.put_json(CURRENT_TABLE_KEY, TABLE)
    services = Services(store)
    client = FakeClient({1: UPSTREAM_PAGE})
    services.sync_runner.engine_factory = lambda: SyncEngine(store, client, total_pages=1, sleep=MagicMock())
    return services


@pytest.fixture
def client(services):
    app.dependency_overrides[get_services] = lambda: services
    yield TestClient(app)
    app.dependency_overrides.clear()


class TestServiceInfo:
    """Test info and health endpoints."""

    def test_root(self, client):
        response = client.get("/")
        assert response.status_code == 200
        data = response.json()
        assert data["name"].startswith("HS Code Verifier API")
        assert any("/verify" in e for e in data["endpoints"])

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["db_health"] is True
        assert data["total_records"] == len(TABLE)
        assert data["last_sync"] is None

    def test_stats(self, client, services):
        services.registry.replace(SANCTIONS, ["7208"])
        response = client.get("/stats")
        assert response.status_code == 200
        data = response.json()
        assert data["database"]["total_records"] == len(TABLE)
        assert data["database"]["sync_type"] == "unknown"
        assert data["sanctions_count"] == 1
        assert data["sanepid_count"] == 0


class TestVerify:
    """Test the /verify endpoint."""

    def test_exact_final_with_separators(self, client):
        response = client.post("/verify", json={"code": "0101 21"})
        assert response.status_code == 200
        data = response.json()
        assert data["match_kind"] == "exact_final"
        assert data["code"] == "010121"
        assert data["exact_match"] is True
        assert data["description"] == "Live animals → Horses → Pure-bred"
        assert data["special_status"] is None

    def test_general_code_lists_subcodes(self, client):
        data = client.post("/verify", json={"code": "0101"}).json()
        assert data["match_kind"] == "exact_general_with_subcodes"
        assert data["is_general_code"] is True
        assert data["subcodes"] == ["010121", "010129"]
        assert data["subcode_count"] == 2

    def test_single_subcode_extension(self, client):
        data = client.post("/verify", json={"code": "0201 1"}).json()
        assert data["match_kind"] == "single_subcode_extension"
        assert data["code"] == "0201100000"
        assert data["original_code"] == "02011"

    def test_not_found(self, client):
        data = client.post("/verify", json={"code": "9999"}).json()
        assert data["match_kind"] == "not_found"
        assert data["found"] is False

    def test_invalid_length_is_400(self, client):
        response = client.post("/verify", json={"code": "12"})
        assert response.status_code == 400
        assert "at least 4 digits" in response.json()["detail"]

    def test_empty_code_is_400(self, client):
        response = client.post("/verify", json={"code": "   "})
        assert response.status_code == 400
        assert "at least 4 digits" in response.json()["detail"]

    def test_sanction_takes_precedence_over_sanepid(self, client, services):
        services.registry.replace(SANCTIONS, ["7208"])
        services.registry.replace(SANEPID, ["7208"])

        data = client.post("/verify", json={"code": "7208.10.00"}).json()

        assert data["sanctioned"] is True
        assert data["sanepid"] is True
        assert data["special_status"] == "sanction"
        assert "sanctions" in data["special_message"]

    def test_sanepid_only(self, client, services):
        services.registry.replace(SANEPID, ["0201"])

        data = client.post("/verify", json={"code": "020110"}).json()

        assert data["special_status"] == "sanepid"
        assert data["sanctioned"] is False


class TestStatusLists:
    """Test restriction list endpoints."""

    def test_list_empty(self, client):
        data = client.get("/sanctions").json()
        assert data["sanctions"]["count"] == 0
        assert data["sanepid"]["codes"] == []

    def test_update_requires_token(self, client):
        with patch('src.core.config.ADMIN_TOKEN', 'secret'):
            response = client.post("/sanctions/update", json={"codes": ["7208"]})
            assert response.status_code == 401

            response = client.post("/sanctions/update", json={"codes": ["7208"]},
                                   headers={"Authorization": "Bearer wrong"})
            assert response.status_code == 401

    def test_update_refused_when_no_token_configured(self, client):
        with patch('src.core.config.ADMIN_TOKEN', None):
            response = client.post("/sanctions/update", json={"codes": ["7208"]},
                                   headers={"Authorization": "Bearer anything"})
            assert response.status_code == 401

    def test_update_replaces_list(self, client):
        headers = {"Authorization": "Bearer secret"}
        with patch('src.core.config.ADMIN_TOKEN', 'secret'):
            response = client.post("/sanctions/update", headers=headers, json={
                "codes": ["0201", "0202", "bad"],
                "type": "sanepid",
                "metadata": {"updatedBy": "ops"},
            })

        assert response.status_code == 200
        data = response.json()
        assert data["type"] == "sanepid"
        assert data["submitted"] == 3
        assert data["accepted"] == 2
        assert data["rejected"] == 1

        lists = client.get("/sanctions").json()
        assert lists["sanepid"]["codes"] == ["0201", "0202"]
        assert lists["sanepid"]["updated_by"] == "ops"

    def test_update_counts_malformed_entries(self, client):
        with patch('src.core.config.ADMIN_TOKEN', 'secret'):
            response = client.post("/sanctions/update", headers={"Authorization": "Bearer secret"},
                                   json={"codes": ["0101", 12, None, "72 08"]})

        assert response.status_code == 200
        data = response.json()
        assert data["submitted"] == 4
        assert data["accepted"] == 1
        assert data["rejected"] == 3
        assert client.get("/sanctions").json()["sanctions"]["codes"] == ["0101"]

    def test_update_empty_list_is_422(self, client):
        with patch('src.core.config.ADMIN_TOKEN', 'secret'):
            response = client.post("/sanctions/update", headers={"Authorization": "Bearer secret"},
                                   json={"codes": []})
        assert response.status_code == 422

    def test_update_unknown_type_is_422(self, client):
        with patch('src.core.config.ADMIN_TOKEN', 'secret'):
            response = client.post("/sanctions/update", headers={"Authorization": "Bearer secret"},
                                   json={"codes": ["7208"], "type": "embargo"})
        assert response.status_code == 422

    def test_update_storage_failure_is_503(self, client, services):
        with patch('src.core.config.ADMIN_TOKEN', 'secret'), \
             patch.object(services.registry, 'replace', side_effect=StorageUnavailable("locked")):
            response = client.post("/sanctions/update", headers={"Authorization": "Bearer secret"},
                                   json={"codes": ["7208"]})
        assert response.status_code == 503


class TestSync:
    """Test sync trigger and status."""

    def test_sync_requires_token(self, client):
        with patch('src.core.config.SYNC_TOKEN', 'sync-secret'):
            assert client.post("/api/sync").status_code == 401

    def test_sync_runs_in_background(self, client, services):
        with patch('src.core.config.SYNC_TOKEN', 'sync-secret'):
            response = client.post("/api/sync", headers={"Authorization": "Bearer sync-secret"})

        assert response.status_code == 200
        assert response.json()["success"] is True

        # TestClient runs background tasks before returning
        assert services.sync_runner.running is False
        assert services.sync_runner.last_report.success
        assert read_metadata(services.store).sync_type == "delta"

        # Cache was invalidated: the new table is served right away
        assert client.get("/health").json()["total_records"] == 2

    def test_sync_conflict_when_running(self, client, services):
        assert services.sync_runner.try_start()
        try:
            with patch('src.core.config.SYNC_TOKEN', 'sync-secret'):
                response = client.post("/api/sync", headers={"Authorization": "Bearer sync-secret"})
            assert response.status_code == 409
        finally:
            services.sync_runner.lease.release()
            services.sync_runner._lock.release()

    def test_sync_conflict_when_another_process_holds_lease(self, client, services):
        other_process = SyncLease(services.store)
        assert other_process.acquire()
        try:
            with patch('src.core.config.SYNC_TOKEN', 'sync-secret'):
                response = client.post("/api/sync", headers={"Authorization": "Bearer sync-secret"})
            assert response.status_code == 409
            assert client.get("/api/sync/status").json()["running"] is True
        finally:
            other_process.release()

        assert services.sync_runner.last_report is None

    def test_sync_status(self, client, services):
        services.sync_runner.run()

        data = client.get("/api/sync/status").json()

        assert data["running"] is False
        assert data["sync_type"] == "delta"
        assert data["total_records"] == 2
        assert data["last_run"]["success"] is True
