import httpx
import pytest
import respx
from sqlmodel import Session, SQLModel, create_engine
from sqlmodel.pool import StaticPool

from modpack_manager.errors import ExternalServiceError, ManifestValidationError
from modpack_manager.models.modpack import Modpack
from modpack_manager.schemas.imports import (
    ConflictResolution,
    ImportConflictOutcome,
    ImportOk,
    ResolutionChoice,
)
from modpack_manager.schemas.remote import RemoteSourceSet
from modpack_manager.schemas.version import ChangeType
from modpack_manager.services.import_service import resolve_conflicts
from modpack_manager.services.manifest_service import export_native_manifest
from modpack_manager.services.modpack_service import (
    add_mod_to_modpack,
    get_modpack_state,
    remove_mod_from_modpack,
    replace_mod_in_modpack,
)
from modpack_manager.services.remote_service import (
    apply_remote_update,
    check_for_update,
    clear_remote_source,
    fetch_remote_manifest,
    import_from_url,
    normalize_remote_url,
    set_remote_source,
)
from modpack_manager.services.version_service import create_version, current_version

REMOTE_URL = "https://packs.example/cozy.modpack.json"


@pytest.fixture
def subscriber():
    """A second database standing in for another user's installation."""
    eng = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    SQLModel.metadata.create_all(eng)
    with Session(eng) as sess:
        yield sess


@pytest.fixture
def published(session, catalog, make_mod, make_modpack):
    """Publisher-side modpack plus a fetcher serving its latest export."""
    for pid, fid in ((1, 10), (2, 20), (2, 21), (3, 30)):
        catalog.add(pid, fid)
    pack = make_modpack("Cozy", mods=[make_mod(1, 10), make_mod(2, 20)])
    create_version(session, pack, "first release")

    async def fetch(url: str) -> dict:
        return export_native_manifest(session, pack).manifest.model_dump(mode="json")
    return pack, fetch


async def _subscribe(subscriber, catalog, fetch) -> Modpack:
    outcome = await import_from_url(subscriber, catalog, REMOTE_URL, fetch=fetch)
    assert isinstance(outcome, ImportOk)
    return subscriber.get(Modpack, outcome.modpack_id)


class TestSubscribe:
    @pytest.mark.asyncio
    async def test_import_from_url_records_source(self, subscriber, catalog, published):
        publisher, fetch = published
        sub = await _subscribe(subscriber, catalog, fetch)

        assert sub.remote_url == REMOTE_URL
        assert sub.remote_last_checksum is not None
        assert sub.share_code == publisher.share_code
        assert current_version(subscriber, sub).message == "first release"

    def test_set_remote_source_resets_checksum_on_new_url(self, session, make_modpack):
        pack = make_modpack()
        pack.remote_url = REMOTE_URL
        pack.remote_last_checksum = "abc"
        set_remote_source(session, pack, RemoteSourceSet(url=REMOTE_URL))
        assert pack.remote_last_checksum == "abc"

        set_remote_source(session, pack, RemoteSourceSet(url="https://other.example/p.json", auto_check=True))
        assert pack.remote_last_checksum is None
        assert pack.remote_auto_check is True

        clear_remote_source(session, pack)
        assert pack.remote_url is None

    def test_rejects_non_http_url(self):
        with pytest.raises(ManifestValidationError):
            normalize_remote_url("file:///etc/passwd")


class TestCheckForUpdate:
    @pytest.mark.asyncio
    async def test_unchanged_remote_takes_cheap_path(self, subscriber, catalog, published):
        _, fetch = published
        sub = await _subscribe(subscriber, catalog, fetch)
        state_before = get_modpack_state(sub)

        check = await check_for_update(subscriber, sub, fetch=fetch)

        assert check.has_update is False
        assert check.full_diff is False
        assert check.changes == []
        assert sub.remote_last_checked is not None
        assert get_modpack_state(sub) == state_before

    @pytest.mark.asyncio
    async def test_remote_changes_are_reported(self, session, subscriber, catalog, published, make_mod):
        publisher, fetch = published
        sub = await _subscribe(subscriber, catalog, fetch)
        old_checksum = sub.remote_last_checksum

        add_mod_to_modpack(session, publisher, make_mod(3, 30).id)
        remove_mod_from_modpack(session, publisher, "cf-1-10")
        create_version(session, publisher, "swap")

        check = await check_for_update(subscriber, sub, fetch=fetch)

        assert check.has_update is True
        assert check.full_diff is True
        assert {(c.type, c.project_key) for c in check.changes} == {
            (ChangeType.add, "cf-3"),
            (ChangeType.remove, "cf-1"),
        }
        assert check.has_version_history_changes is True
        assert check.loader_changed is False
        assert sub.remote_last_checksum == old_checksum

    @pytest.mark.asyncio
    async def test_loader_bump_sets_flag_only(self, session, subscriber, catalog, published):
        publisher, fetch = published
        sub = await _subscribe(subscriber, catalog, fetch)
        publisher.loader_version = "47.3.0"
        session.add(publisher)
        session.commit()

        check = await check_for_update(subscriber, sub, fetch=fetch)

        assert check.has_update is True
        assert check.loader_version_changed is True
        assert check.changes == []

    @pytest.mark.asyncio
    async def test_requires_remote(self, session, make_modpack):
        with pytest.raises(ValueError, match="no remote"):
            await check_for_update(session, make_modpack())


class TestApplyRemoteUpdate:
    @pytest.mark.asyncio
    async def test_apply_converges(self, session, subscriber, catalog, published, make_mod):
        publisher, fetch = published
        sub = await _subscribe(subscriber, catalog, fetch)
        add_mod_to_modpack(session, publisher, make_mod(3, 30).id)
        remove_mod_from_modpack(session, publisher, "cf-1-10")
        create_version(session, publisher, "swap")

        outcome = await apply_remote_update(subscriber, catalog, sub, fetch=fetch)

        assert isinstance(outcome, ImportOk)
        assert get_modpack_state(sub).mod_ids == ["cf-2-20", "cf-3-30"]
        assert current_version(subscriber, sub).message == "Synced with remote"
        check = await check_for_update(subscriber, sub, fetch=fetch)
        assert check.has_update is False
        assert check.full_diff is False

    @pytest.mark.asyncio
    async def test_file_bump_pauses_on_conflict(self, session, subscriber, catalog, published, make_mod):
        publisher, fetch = published
        sub = await _subscribe(subscriber, catalog, fetch)
        replace_mod_in_modpack(session, publisher, "cf-2-20", make_mod(2, 21).id)

        outcome = await apply_remote_update(subscriber, catalog, sub, fetch=fetch)

        assert isinstance(outcome, ImportConflictOutcome)
        (conflict,) = outcome.conflicts
        assert (conflict.existing_file_id, conflict.new_file_id) == ("20", "21")

        resolved = await resolve_conflicts(
            subscriber,
            catalog,
            sub.id,
            [ConflictResolution(project_id="2", choice=ResolutionChoice.use_new)],
        )
        assert isinstance(resolved, ImportOk)
        assert get_modpack_state(sub).mod_ids == ["cf-1-10", "cf-2-21"]


class TestFetchRemoteManifest:
    @respx.mock
    @pytest.mark.asyncio
    async def test_fetches_latest_gist_revision(self):
        latest = "https://gist.githubusercontent.com/octo/abc123/raw/cozy.modpack.json"
        route = respx.get(latest).mock(return_value=httpx.Response(200, json={"share_code": "MPK-1"}))
        pinned = "https://gist.githubusercontent.com/octo/abc123/raw/" + "a" * 40 + "/cozy.modpack.json"

        data = await fetch_remote_manifest(pinned)

        assert data == {"share_code": "MPK-1"}
        assert route.calls[0].request.headers["Cache-Control"] == "no-cache"

    @respx.mock
    @pytest.mark.asyncio
    async def test_html_body_rejected(self):
        respx.get(REMOTE_URL).mock(return_value=httpx.Response(200, text="<!doctype html><html></html>"))
        with pytest.raises(ManifestValidationError, match="HTML"):
            await fetch_remote_manifest(REMOTE_URL)

    @respx.mock
    @pytest.mark.asyncio
    async def test_non_object_rejected(self):
        respx.get(REMOTE_URL).mock(return_value=httpx.Response(200, json=[1, 2]))
        with pytest.raises(ManifestValidationError):
            await fetch_remote_manifest(REMOTE_URL)

    @respx.mock
    @pytest.mark.asyncio
    async def test_server_error(self):
        respx.get(REMOTE_URL).mock(return_value=httpx.Response(503))
        with pytest.raises(ExternalServiceError) as exc_info:
            await fetch_remote_manifest(REMOTE_URL)
        assert exc_info.value.status_code == 503
        assert exc_info.value.retryable is True

    @respx.mock
    @pytest.mark.asyncio
    async def test_unreachable(self):
        respx.get(REMOTE_URL).mock(side_effect=httpx.ConnectError("refused"))
        with pytest.raises(ExternalServiceError) as exc_info:
            await fetch_remote_manifest(REMOTE_URL)
        assert exc_info.value.retryable is True
