import httpx
import pytest
import respx

from modpack_manager.publish.gist import BASE_URL as GITHUB_URL

REMOTE_URL = "https://packs.example/shared.modpack.json"


@pytest.fixture
def exported(client, catalog):
    catalog.add(1, 10, "Alpha")
    client.post("/api/v1/library/from-catalog", json={"project_id": "1", "file_id": "10"})
    pack = client.post("/api/v1/modpacks/", json={"name": "Shared", "loader": "forge"}).json()
    client.post(f"/api/v1/modpacks/{pack['id']}/mods", json={"mod_id": "cf-1-10"})
    client.post(f"/api/v1/modpacks/{pack['id']}/versions/init")
    return pack["id"]


class TestExport:
    def test_native_export(self, client, exported):
        r = client.get(f"/api/v1/modpacks/{exported}/export")
        assert r.status_code == 200
        body = r.json()
        assert body["share_code"].startswith("MPK-")
        assert body["manifest"]["checksum"] == body["checksum"]
        assert len(body["manifest"]["version_history"]["versions"]) == 1

    def test_export_without_history(self, client, exported):
        body = client.get(f"/api/v1/modpacks/{exported}/export", params={"history": "none"}).json()
        assert body["manifest"].get("version_history") is None

    def test_bad_history_mode(self, client, exported):
        assert client.get(f"/api/v1/modpacks/{exported}/export", params={"history": "all"}).status_code == 422

    def test_pack_export(self, client, exported):
        r = client.get(f"/api/v1/modpacks/{exported}/export/pack")
        assert r.status_code == 200
        assert r.json()["files"][0]["projectID"] == 1


class TestRemoteSource:
    def test_set_and_clear(self, client, exported):
        r = client.put(f"/api/v1/modpacks/{exported}/remote", json={"url": REMOTE_URL})
        assert r.status_code == 200
        assert r.json()["remote_url"] == REMOTE_URL
        r = client.delete(f"/api/v1/modpacks/{exported}/remote")
        assert r.json()["remote_url"] is None

    def test_rejects_non_http(self, client, exported):
        r = client.put(f"/api/v1/modpacks/{exported}/remote", json={"url": "ftp://x/y.json"})
        assert r.status_code == 422

    def test_check_without_remote(self, client, exported):
        assert client.post(f"/api/v1/modpacks/{exported}/remote/check").status_code == 400

    @respx.mock
    def test_check_reports_update(self, client, exported):
        manifest = client.get(f"/api/v1/modpacks/{exported}/export").json()["manifest"]
        client.put(f"/api/v1/modpacks/{exported}/remote", json={"url": REMOTE_URL})
        client.delete(f"/api/v1/modpacks/{exported}/mods/cf-1-10")
        respx.get(REMOTE_URL).mock(return_value=httpx.Response(200, json=manifest))

        r = client.post(f"/api/v1/modpacks/{exported}/remote/check")

        assert r.status_code == 200
        body = r.json()
        assert body["full_diff"] is True
        assert body["has_update"] is True
        assert [(c["type"], c["mod_id"]) for c in body["changes"]] == [("add", "cf-1-10")]

    @respx.mock
    def test_check_html_is_unprocessable(self, client, exported):
        client.put(f"/api/v1/modpacks/{exported}/remote", json={"url": REMOTE_URL})
        respx.get(REMOTE_URL).mock(return_value=httpx.Response(200, text="<html>login</html>"))
        assert client.post(f"/api/v1/modpacks/{exported}/remote/check").status_code == 422

    @respx.mock
    def test_check_upstream_failure(self, client, exported):
        client.put(f"/api/v1/modpacks/{exported}/remote", json={"url": REMOTE_URL})
        respx.get(REMOTE_URL).mock(return_value=httpx.Response(500))
        assert client.post(f"/api/v1/modpacks/{exported}/remote/check").status_code == 502


class TestPublish:
    def test_requires_token(self, client, exported, monkeypatch):
        monkeypatch.setattr("modpack_manager.config.settings.github_token", "")
        assert client.post(f"/api/v1/modpacks/{exported}/publish").status_code == 400

    @respx.mock
    def test_publish_creates_gist(self, client, exported, monkeypatch):
        monkeypatch.setattr("modpack_manager.config.settings.github_token", "ghp_test")
        route = respx.post(f"{GITHUB_URL}/gists").mock(
            return_value=httpx.Response(
                201,
                json={
                    "id": "abc123",
                    "html_url": "https://gist.github.com/octo/abc123",
                    "files": {
                        "shared.modpack.json": {
                            "raw_url": "https://gist.githubusercontent.com/octo/abc123/raw/"
                            + "f" * 40
                            + "/shared.modpack.json"
                        }
                    },
                },
            )
        )

        r = client.post(f"/api/v1/modpacks/{exported}/publish")

        assert r.status_code == 200
        assert route.called
        assert r.json()["raw_url"] == "https://gist.githubusercontent.com/octo/abc123/raw/shared.modpack.json"
        assert client.get(f"/api/v1/modpacks/{exported}").json()["publish_raw_url"] == r.json()["raw_url"]
