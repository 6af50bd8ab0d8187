import pytest


@pytest.fixture
def pack_with_mod(client):
    mod = client.post(
        "/api/v1/library/",
        json={"project_id": "1", "file_id": "10", "name": "Alpha", "filename": "alpha-10.jar"},
    ).json()
    pack = client.post(
        "/api/v1/modpacks/",
        json={"name": "Versioned", "game_version": "1.20.1", "loader": "forge", "loader_version": "47.2.0"},
    ).json()
    client.post(f"/api/v1/modpacks/{pack['id']}/mods", json={"mod_id": mod["id"]})
    return pack["id"], mod["id"]


class TestCommit:
    def test_init_then_commit(self, client, pack_with_mod):
        pack_id, _ = pack_with_mod
        r = client.post(f"/api/v1/modpacks/{pack_id}/versions/init")
        assert r.status_code == 201
        assert (r.json()["version_id"], r.json()["tag"]) == ("v1", "1.0.0")

        client.patch(f"/api/v1/modpacks/{pack_id}", json={"loader_version": "47.3.0"})
        r = client.post(f"/api/v1/modpacks/{pack_id}/versions/", json={"message": "bump forge"})
        assert r.status_code == 201
        assert (r.json()["version_id"], r.json()["tag"]) == ("v2", "1.0.1")

        history = client.get(f"/api/v1/modpacks/{pack_id}/versions/").json()
        assert [v["version_id"] for v in history["versions"]] == ["v1", "v2"]
        assert history["current_version_id"] == r.json()["version_id"]

    def test_empty_commit_conflicts(self, client, pack_with_mod):
        pack_id, _ = pack_with_mod
        client.post(f"/api/v1/modpacks/{pack_id}/versions/", json={"message": "first"})
        r = client.post(f"/api/v1/modpacks/{pack_id}/versions/", json={"message": "nothing"})
        assert r.status_code == 409

    def test_forced_commit(self, client, pack_with_mod):
        pack_id, _ = pack_with_mod
        client.post(f"/api/v1/modpacks/{pack_id}/versions/", json={"message": "first"})
        r = client.post(f"/api/v1/modpacks/{pack_id}/versions/", json={"message": "marker", "force": True})
        assert r.status_code == 201
        assert r.json()["changes"] == []

    def test_unknown_modpack(self, client):
        assert client.get("/api/v1/modpacks/missing/versions/").status_code == 404


class TestUnsavedAndCompare:
    def test_unsaved_then_revert(self, client, pack_with_mod):
        pack_id, mod_id = pack_with_mod
        client.post(f"/api/v1/modpacks/{pack_id}/versions/", json={"message": "first"})
        client.post(f"/api/v1/modpacks/{pack_id}/mods/{mod_id}/toggle")

        unsaved = client.get(f"/api/v1/modpacks/{pack_id}/versions/unsaved").json()
        assert unsaved["has_changes"] is True
        assert unsaved["changes"][0]["type"] == "disable"

        r = client.post(f"/api/v1/modpacks/{pack_id}/versions/unsaved/revert")
        assert r.status_code == 200
        assert client.get(f"/api/v1/modpacks/{pack_id}/versions/unsaved").json()["has_changes"] is False

    def test_compare(self, client, pack_with_mod):
        pack_id, mod_id = pack_with_mod
        v1 = client.post(f"/api/v1/modpacks/{pack_id}/versions/", json={"message": "first"}).json()
        client.delete(f"/api/v1/modpacks/{pack_id}/mods/{mod_id}")
        v2 = client.post(f"/api/v1/modpacks/{pack_id}/versions/", json={"message": "drop"}).json()

        r = client.get(
            f"/api/v1/modpacks/{pack_id}/versions/compare",
            params={"from_id": v1["version_id"], "to_id": v2["version_id"]},
        )
        assert r.status_code == 200
        assert [c["type"] for c in r.json()] == ["remove"]

    def test_version_detail_404(self, client, pack_with_mod):
        pack_id, _ = pack_with_mod
        assert client.get(f"/api/v1/modpacks/{pack_id}/versions/nope").status_code == 404


class TestRollback:
    def test_rollback_reacquires_deleted_mod(self, client, catalog, pack_with_mod):
        pack_id, mod_id = pack_with_mod
        catalog.add(1, 10, "Alpha")
        v1 = client.post(f"/api/v1/modpacks/{pack_id}/versions/", json={"message": "first"}).json()
        client.delete(f"/api/v1/modpacks/{pack_id}/mods/{mod_id}")
        client.post(f"/api/v1/modpacks/{pack_id}/versions/", json={"message": "drop"})
        client.delete(f"/api/v1/library/{mod_id}")

        preview = client.get(f"/api/v1/modpacks/{pack_id}/versions/{v1['version_id']}/rollback").json()
        assert preview["to_reacquire"] == [mod_id]

        r = client.post(f"/api/v1/modpacks/{pack_id}/versions/{v1['version_id']}/rollback")
        assert r.status_code == 200
        body = r.json()
        assert body["success"] is True
        assert body["restored_count"] == 1
        assert client.get(f"/api/v1/library/{mod_id}").status_code == 200
        pack = client.get(f"/api/v1/modpacks/{pack_id}").json()
        assert [m["mod_id"] for m in pack["mods"]] == [mod_id]
