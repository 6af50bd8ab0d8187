import pytest

from modpack_manager.identity import (
    ModRef,
    ModSource,
    disabled_filename,
    enabled_filename,
    make_mod_id,
    parse_mod_id,
    project_key_of,
)


class TestModIds:
    def test_curseforge_id(self):
        assert make_mod_id(ModSource.curseforge, 100, 10) == "cf-100-10"

    def test_modrinth_id(self):
        assert make_mod_id("modrinth", "AANobbMI", "abc123") == "mr-AANobbMI-abc123"

    def test_parse_roundtrip(self):
        ref = parse_mod_id("cf-238222-4712345")
        assert ref == ModRef(ModSource.curseforge, "238222", "4712345")
        assert ref.project_key == "cf-238222"

    @pytest.mark.parametrize("legacy", ["jei", "mod_12345", "cf-100", "xx-1-2"])
    def test_legacy_ids_have_no_provenance(self, legacy):
        assert parse_mod_id(legacy) is None

    def test_same_project_different_file_share_key(self):
        assert project_key_of("cf-100-9") == project_key_of("cf-100-10")
        assert make_mod_id("curseforge", 100, 9) != make_mod_id("curseforge", 100, 10)

    def test_legacy_id_is_its_own_project(self):
        assert project_key_of("jei") == "jei"


class TestDisabledSuffix:
    def test_disable_is_idempotent(self):
        assert disabled_filename("jei.jar") == "jei.jar.disabled"
        assert disabled_filename("jei.jar.disabled") == "jei.jar.disabled"

    def test_enable_strips_suffix(self):
        assert enabled_filename("jei.jar.disabled") == "jei.jar"
        assert enabled_filename("jei.jar") == "jei.jar"
