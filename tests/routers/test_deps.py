import asyncio

import pytest
from fastapi import HTTPException
from sqlmodel import Session

from modpack_manager.routers.deps import locked_modpack, locked_share_code
from modpack_manager.services.locks import ModpackLocks
from modpack_manager.services.manifest_service import export_native_manifest
from modpack_manager.services.version_service import create_version, list_versions


class TestLockedModpack:
    @pytest.mark.asyncio
    async def test_queued_commit_sees_previous_one(self, engine, session, make_mod, make_modpack):
        pack = make_modpack(mods=[make_mod(1, 10)])
        create_version(session, pack, "first")
        locks = ModpackLocks()
        appended: list[tuple[str, str | None, str]] = []

        async def commit(message: str) -> None:
            with Session(engine) as own:
                async with locked_modpack(pack.id, own, locks) as modpack:
                    await asyncio.sleep(0)
                    version = create_version(own, modpack, message, force=True)
                    appended.append((version.version_id, version.parent_id, version.tag))

        await asyncio.gather(commit("a"), commit("b"))

        assert appended == [("v2", "v1", "1.0.1"), ("v3", "v2", "1.0.2")]
        assert [v.version_id for v in list_versions(session, pack.id)] == ["v1", "v2", "v3"]

    @pytest.mark.asyncio
    async def test_unknown_modpack_is_404(self, session):
        locks = ModpackLocks()
        with pytest.raises(HTTPException) as exc:
            async with locked_modpack("missing", session, locks):
                pass
        assert exc.value.status_code == 404
        assert not locks.is_locked("missing")


class TestLockedShareCode:
    @pytest.mark.asyncio
    async def test_holds_lock_of_existing_modpack(self, session, make_modpack):
        pack = make_modpack()
        share_code = export_native_manifest(session, pack).manifest.share_code
        locks = ModpackLocks()

        async with locked_share_code(share_code, session, locks):
            assert locks.is_locked(pack.id)
        assert not locks.is_locked(pack.id)

    @pytest.mark.asyncio
    async def test_new_share_code_takes_no_lock(self, session):
        locks = ModpackLocks()
        async with locked_share_code("MPK-NEWCODE1", session, locks):
            pass
        async with locked_share_code(None, session, locks):
            pass
