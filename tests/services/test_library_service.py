import pytest

from modpack_manager.constants import ContentType
from modpack_manager.errors import NotFoundError
from modpack_manager.identity import ModRef, ModSource
from modpack_manager.schemas.catalog import CatalogDependency, CatalogFile, CatalogMod
from modpack_manager.services.library_service import (
    add_mod,
    check_library_updates,
    delete_mod,
    fetch_catalog_mod,
    find_by_project,
    list_mods,
    mod_dependencies,
    mod_from_catalog,
)
from modpack_manager.services.modpack_service import get_modpack_state


class TestLibrary:
    def test_add_is_idempotent_by_id(self, session, make_mod):
        first = make_mod(1, 10)
        again = make_mod(1, 10, "Renamed")
        assert again.id == first.id == "cf-1-10"
        assert again.name == "Mod 1"
        assert len(list_mods(session)) == 1

    def test_files_of_one_project(self, session, make_mod):
        make_mod(1, 10)
        make_mod(1, 11)
        make_mod(2, 20)
        assert {m.id for m in find_by_project(session, "cf-1")} == {"cf-1-10", "cf-1-11"}

    def test_filter_by_content_type(self, session, make_mod):
        make_mod(1, 10)
        make_mod(2, 20, content_type=ContentType.shader, filename="s.zip")
        assert [m.id for m in list_mods(session, ContentType.shader)] == ["cf-2-20"]

    def test_delete_keeps_membership(self, session, make_mod, make_modpack):
        mod = make_mod(1, 10)
        pack = make_modpack(mods=[mod])
        delete_mod(session, mod.id)
        session.refresh(pack)
        assert get_modpack_state(pack).mod_ids == ["cf-1-10"]
        with pytest.raises(NotFoundError):
            delete_mod(session, mod.id)


class TestModFromCatalog:
    def _cfile(self, versions: list[str]) -> CatalogFile:
        return CatalogFile(
            id=4712,
            project_id=238222,
            display_name="JEI 15.2",
            file_name="jei-15.2.jar",
            game_versions=versions,
            release_type=2,
            dependencies=[CatalogDependency(project_id=1, relation_type=3)],
        )

    def test_prefers_requested_target(self):
        data = mod_from_catalog(
            CatalogMod(id=238222, name="JEI", class_id=6),
            self._cfile(["1.20.1", "1.20.2", "Forge", "NeoForge"]),
            preferred_loader="neoforge",
            target_game_version="1.20.1",
        )
        assert (data.game_version, data.loader) == ("1.20.1", "neoforge")
        assert data.version == "JEI 15.2"
        assert data.release_type == "beta"
        assert data.dependencies[0].type == "required"

    def test_newest_game_version_without_target(self):
        data = mod_from_catalog(
            CatalogMod(id=1, name="X", class_id=12),
            self._cfile(["1.19.2", "1.20.1", "1.9"]),
        )
        assert data.game_version == "1.20.1"
        assert data.loader == "unknown"
        assert data.content_type == ContentType.resourcepack

    def test_dependencies_round_trip_through_library(self, session):
        mod = add_mod(
            session,
            mod_from_catalog(CatalogMod(id=238222, name="JEI", class_id=6), self._cfile(["1.20.1"])),
        )
        assert [(d.project_id, d.type) for d in mod_dependencies(mod)] == [("1", "required")]


class TestFetchCatalogMod:
    @pytest.mark.asyncio
    async def test_resolves_provenance(self, catalog):
        catalog.add(5, 50, "Create")
        data = await fetch_catalog_mod(catalog, ModRef(ModSource.curseforge, "5", "50"))
        assert data.filename == "create-50.jar"

    @pytest.mark.asyncio
    async def test_missing_file(self, catalog):
        catalog.add(5, 50)
        with pytest.raises(NotFoundError):
            await fetch_catalog_mod(catalog, ModRef(ModSource.curseforge, "5", "51"))

    @pytest.mark.asyncio
    async def test_non_catalog_source(self, catalog):
        with pytest.raises(NotFoundError):
            await fetch_catalog_mod(catalog, ModRef(ModSource.modrinth, "abc", "def"))


class TestCheckLibraryUpdates:
    @pytest.mark.asyncio
    async def test_reports_newer_files_in_batches(self, session, catalog, make_mod):
        for pid in range(1, 6):
            catalog.add(pid, pid * 10)
            make_mod(pid, pid * 10)
        catalog.add(2, 21)
        catalog.add(4, 41)
        make_mod(4, 41)
        progress: list[tuple[str, int, int, str]] = []

        report = await check_library_updates(
            session, catalog, batch_size=2, on_progress=lambda *p: progress.append(p)
        )

        assert report.checked == 5
        assert [u.mod_id for u in report.updates] == ["cf-2-20"]
        assert report.updates[0].latest_file_id == "21"
        assert [(p[0], p[1]) for p in progress] == [
            ("checking_updates", 2),
            ("checking_updates", 4),
            ("checking_updates", 5),
        ]

    @pytest.mark.asyncio
    async def test_failing_project_does_not_stop_others(self, session, catalog, make_mod):
        for pid in (1, 2):
            catalog.add(pid, pid * 10)
            make_mod(pid, pid * 10)
        catalog.add(2, 25)
        catalog.failing.add(1)

        report = await check_library_updates(session, catalog)

        assert len(report.errors) == 1
        assert [u.mod_id for u in report.updates] == ["cf-2-20"]
