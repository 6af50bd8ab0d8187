import zipfile

import pytest
from sqlmodel import select

from modpack_manager.errors import NotFoundError
from modpack_manager.identity import ModSource
from modpack_manager.models.mod import Mod
from modpack_manager.models.modpack import Modpack
from modpack_manager.models.pending_import import PendingImport
from modpack_manager.schemas.imports import (
    ConflictResolution,
    ImportConflictOutcome,
    ImportFailed,
    ImportOk,
    IncomingMod,
    IncomingModpack,
    ResolutionChoice,
)
from modpack_manager.services import overrides
from modpack_manager.services.import_service import (
    discard_pending_import,
    get_pending_import,
    import_manifest,
    import_pack_archive,
    resolve_conflicts,
)
from modpack_manager.services.modpack_service import get_modpack_state, set_mod_locked
from modpack_manager.services.version_service import list_versions


def _incoming(*mods: IncomingMod, **kwargs) -> IncomingModpack:
    return IncomingModpack(
        name=kwargs.pop("name", "Imported"),
        game_version="1.20.1",
        loader="forge",
        loader_version="47.2.0",
        mods=list(mods),
        **kwargs,
    )


def _ref(project_id: int, file_id: int, **kwargs) -> IncomingMod:
    return IncomingMod(project_id=str(project_id), file_id=str(file_id), **kwargs)


def _library_count(session) -> int:
    return len(session.exec(select(Mod)).all())


class TestAttemptPhase:
    @pytest.mark.asyncio
    async def test_reuses_identical_mod_without_catalog(self, session, catalog, make_mod):
        make_mod(1, 10)
        outcome = await import_manifest(session, catalog, _incoming(_ref(1, 10)))
        assert isinstance(outcome, ImportOk)
        assert outcome.summary.mods_reused == 1
        assert catalog.calls == []
        modpack = session.get(Modpack, outcome.modpack_id)
        assert get_modpack_state(modpack).mod_ids == ["cf-1-10"]

    @pytest.mark.asyncio
    async def test_fetches_unknown_project(self, session, catalog):
        catalog.add(5, 50, "Create")
        outcome = await import_manifest(session, catalog, _incoming(_ref(5, 50, disabled=True)))
        assert isinstance(outcome, ImportOk)
        assert outcome.summary.mods_added == 1
        mod = session.get(Mod, "cf-5-50")
        assert mod.name == "Create"
        state = get_modpack_state(session.get(Modpack, outcome.modpack_id))
        assert state.disabled == ["cf-5-50"]

    @pytest.mark.asyncio
    async def test_first_import_initializes_history(self, session, catalog, make_mod):
        make_mod(1, 10)
        outcome = await import_manifest(session, catalog, _incoming(_ref(1, 10)))
        versions = list_versions(session, outcome.modpack_id)
        assert [v.version_id for v in versions] == ["v1"]

    @pytest.mark.asyncio
    async def test_catalog_failure_falls_back_to_manifest_data(self, session, catalog):
        catalog.failing.add(7)
        outcome = await import_manifest(
            session,
            catalog,
            _incoming(_ref(7, 70, name="Sodium", filename="sodium-70.jar"), _ref(8, 80)),
        )
        assert isinstance(outcome, ImportOk)
        assert session.get(Mod, "cf-7-70").filename == "sodium-70.jar"
        assert outcome.summary.mods_added == 1
        assert outcome.summary.mods_failed == 1
        assert len(outcome.summary.warnings) == 1
        assert "cf-8-80" in outcome.summary.errors[0]

    @pytest.mark.asyncio
    async def test_duplicate_project_fails_before_mutation(self, session, catalog):
        outcome = await import_manifest(session, catalog, _incoming(_ref(1, 10), _ref(1, 11)))
        assert isinstance(outcome, ImportFailed)
        assert session.exec(select(Modpack)).all() == []

    @pytest.mark.asyncio
    async def test_unknown_target_fails(self, session, catalog):
        outcome = await import_manifest(
            session, catalog, _incoming(_ref(1, 10)), target_modpack_id="nope"
        )
        assert isinstance(outcome, ImportFailed)

    @pytest.mark.asyncio
    async def test_reimport_by_share_code_updates_in_place(
        self, session, catalog, make_mod, make_modpack
    ):
        a, b, c = make_mod(1, 10), make_mod(2, 20), make_mod(3, 30)
        pack = make_modpack(mods=[a, b, c])
        pack.share_code = "MPK-ABCDEF12"
        session.commit()
        set_mod_locked(session, pack, c.id, True)

        outcome = await import_manifest(
            session, catalog, _incoming(_ref(1, 10), share_code="MPK-ABCDEF12")
        )

        assert isinstance(outcome, ImportOk)
        assert outcome.modpack_id == pack.id
        assert outcome.summary.mods_removed == 1
        session.refresh(pack)
        assert get_modpack_state(pack).mod_ids == [a.id, c.id]


class TestConflicts:
    @pytest.mark.asyncio
    async def test_scenario_use_new(self, session, catalog, make_mod):
        make_mod(100, 9, "Jade")
        catalog.add(100, 10, "Jade")

        outcome = await import_manifest(session, catalog, _incoming(_ref(100, 10, name="Jade")))

        assert isinstance(outcome, ImportConflictOutcome)
        (conflict,) = outcome.conflicts
        assert conflict.project_id == "100"
        assert conflict.existing_file_id == "9"
        assert conflict.new_file_id == "10"
        assert conflict.mod_name == "Jade"
        assert session.get(PendingImport, outcome.modpack_id) is not None

        before = _library_count(session)
        result = await resolve_conflicts(
            session,
            catalog,
            outcome.modpack_id,
            [ConflictResolution(project_id="100", choice=ResolutionChoice.use_new)],
        )

        assert isinstance(result, ImportOk)
        assert _library_count(session) == before + 1
        modpack = session.get(Modpack, outcome.modpack_id)
        assert get_modpack_state(modpack).mod_ids == ["cf-100-10"]
        assert session.get(PendingImport, outcome.modpack_id) is None
        assert len(list_versions(session, modpack.id)) == 1

    @pytest.mark.asyncio
    async def test_use_existing_keeps_library_size(self, session, catalog, make_mod):
        make_mod(100, 9)
        outcome = await import_manifest(session, catalog, _incoming(_ref(100, 10)))
        before = _library_count(session)

        result = await resolve_conflicts(
            session,
            catalog,
            outcome.modpack_id,
            [ConflictResolution(project_id="100", choice=ResolutionChoice.use_existing)],
        )

        assert isinstance(result, ImportOk)
        assert _library_count(session) == before
        modpack = session.get(Modpack, outcome.modpack_id)
        assert get_modpack_state(modpack).mod_ids == ["cf-100-9"]
        assert catalog.calls == []

    @pytest.mark.asyncio
    async def test_resolution_is_idempotent(self, session, catalog, make_mod):
        make_mod(100, 9)
        catalog.add(100, 10)
        outcome = await import_manifest(session, catalog, _incoming(_ref(100, 10)))
        decision = [ConflictResolution(project_id="100", choice=ResolutionChoice.use_new)]

        await resolve_conflicts(session, catalog, outcome.modpack_id, decision)
        count = _library_count(session)
        again = await resolve_conflicts(session, catalog, outcome.modpack_id, decision)

        assert isinstance(again, ImportOk)
        assert _library_count(session) == count

    @pytest.mark.asyncio
    async def test_partial_resolution_keeps_rest_pending(self, session, catalog, make_mod):
        make_mod(1, 9)
        make_mod(2, 19)
        make_mod(3, 30)
        outcome = await import_manifest(
            session, catalog, _incoming(_ref(1, 10), _ref(2, 20), _ref(3, 30))
        )
        assert len(outcome.conflicts) == 2
        modpack = session.get(Modpack, outcome.modpack_id)
        # Unambiguous references are bound during the attempt phase
        assert get_modpack_state(modpack).mod_ids == ["cf-3-30"]

        first = await resolve_conflicts(
            session,
            catalog,
            outcome.modpack_id,
            [ConflictResolution(project_id="1", choice=ResolutionChoice.use_existing)],
        )
        assert isinstance(first, ImportConflictOutcome)
        assert [c.project_id for c in first.conflicts] == ["2"]
        assert get_pending_import(session, outcome.modpack_id).resolved_count == 2

        second = await resolve_conflicts(
            session,
            catalog,
            outcome.modpack_id,
            [ConflictResolution(project_id="2", choice=ResolutionChoice.use_existing)],
        )
        assert isinstance(second, ImportOk)
        session.refresh(modpack)
        assert get_modpack_state(modpack).mod_ids == ["cf-1-9", "cf-2-19", "cf-3-30"]

    @pytest.mark.asyncio
    async def test_same_project_id_on_two_sources(self, session, catalog, make_mod):
        make_mod(7, 70, "Curse Seven")
        make_mod(7, 80, "Modrinth Seven", source=ModSource.modrinth)
        outcome = await import_manifest(
            session,
            catalog,
            _incoming(_ref(7, 71), _ref(7, 81, source=ModSource.modrinth)),
        )
        assert sorted(c.project_key for c in outcome.conflicts) == ["cf-7", "mr-7"]

        result = await resolve_conflicts(
            session,
            catalog,
            outcome.modpack_id,
            [ConflictResolution(project_id="7", choice=ResolutionChoice.use_existing)],
        )

        assert isinstance(result, ImportConflictOutcome)
        assert [c.project_key for c in result.conflicts] == ["mr-7"]
        modpack = session.get(Modpack, outcome.modpack_id)
        assert get_modpack_state(modpack).mod_ids == ["cf-7-70"]

        done = await resolve_conflicts(
            session,
            catalog,
            outcome.modpack_id,
            [
                ConflictResolution(
                    source=ModSource.modrinth, project_id="7", choice=ResolutionChoice.use_existing
                )
            ],
        )
        assert isinstance(done, ImportOk)
        session.refresh(modpack)
        assert get_modpack_state(modpack).mod_ids == ["cf-7-70", "mr-7-80"]

    @pytest.mark.asyncio
    async def test_pending_import_blocks_second_import(self, session, catalog, make_mod):
        make_mod(100, 9)
        outcome = await import_manifest(session, catalog, _incoming(_ref(100, 10)))
        again = await import_manifest(
            session, catalog, _incoming(_ref(100, 10)), target_modpack_id=outcome.modpack_id
        )
        assert isinstance(again, ImportFailed)
        assert again.modpack_id == outcome.modpack_id

    @pytest.mark.asyncio
    async def test_discard_pending(self, session, catalog, make_mod):
        make_mod(100, 9)
        outcome = await import_manifest(session, catalog, _incoming(_ref(100, 10)))
        discard_pending_import(session, outcome.modpack_id)
        assert get_pending_import(session, outcome.modpack_id) is None
        with pytest.raises(NotFoundError):
            discard_pending_import(session, outcome.modpack_id)

    @pytest.mark.asyncio
    async def test_locked_member_is_not_replaced(self, session, catalog, make_mod, make_modpack):
        old, new = make_mod(1, 9), make_mod(1, 10)
        pack = make_modpack(mods=[old])
        set_mod_locked(session, pack, old.id, True)

        outcome = await import_manifest(
            session, catalog, _incoming(_ref(1, 10)), target_modpack_id=pack.id
        )

        assert isinstance(outcome, ImportOk)
        assert outcome.summary.warnings
        session.refresh(pack)
        assert get_modpack_state(pack).mod_ids == [old.id]


class TestPackArchive:
    @pytest.mark.asyncio
    async def test_imports_files_and_overrides(self, session, catalog, tmp_path):
        catalog.add(11, 110, "Alpha")
        catalog.add(12, 120, "Beta")
        archive = tmp_path / "pack.zip"
        with zipfile.ZipFile(archive, "w") as zf:
            zf.writestr(
                "manifest.json",
                '{"minecraft": {"version": "1.20.1", "modLoaders": [{"id": "forge-47.2.0",'
                ' "primary": true}]}, "manifestType": "minecraftModpack",'
                ' "manifestVersion": 1, "name": "Zip Pack", "version": "2.0.0",'
                ' "files": [{"projectID": 11, "fileID": 110, "required": true},'
                ' {"projectID": 12, "fileID": 120, "required": false}],'
                ' "overrides": "overrides"}',
            )
            zf.writestr("overrides/config/alpha.toml", "x = 1")

        outcome = await import_pack_archive(session, catalog, archive)

        assert isinstance(outcome, ImportOk)
        modpack = session.get(Modpack, outcome.modpack_id)
        assert modpack.name == "Zip Pack"
        assert (modpack.loader, modpack.loader_version) == ("forge", "47.2.0")
        state = get_modpack_state(modpack)
        assert state.mod_ids == ["cf-11-110", "cf-12-120"]
        assert state.disabled == ["cf-12-120"]
        assert (overrides.overrides_path(modpack.id) / "config/alpha.toml").read_text() == "x = 1"
