"""Reconcile a modpack's desired membership with an instance's files.

Enabled members are expected as ``<folder>/<filename>``; disabled members as
``<folder>/<filename>.disabled`` and never in enabled form. The instance
holds at most one file per project.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path

from sqlmodel import Session

from modpack_manager.catalog.base import CatalogClient
from modpack_manager.constants import CONTENT_EXTENSIONS, CONTENT_FOLDERS, ContentType
from modpack_manager.errors import ExternalServiceError
from modpack_manager.identity import DISABLED_SUFFIX, ModSource, disabled_filename
from modpack_manager.models.instance import Instance
from modpack_manager.models.mod import Mod
from modpack_manager.models.modpack import Modpack
from modpack_manager.schemas.catalog import CatalogFile
from modpack_manager.schemas.instance import (
    ConfigSyncMode,
    DisabledMismatch,
    ExpectedFile,
    SyncResult,
    SyncStatus,
)
from modpack_manager.services import overrides
from modpack_manager.services.library_service import find_by_project, get_mod
from modpack_manager.services.progress import ProgressCallback, noop_progress

logger = logging.getLogger(__name__)


@dataclass
class _Desired:
    mod: Mod
    disabled: bool

    @property
    def folder(self) -> str:
        return CONTENT_FOLDERS[ContentType(self.mod.content_type)]

    @property
    def enabled_name(self) -> str:
        return self.mod.filename

    @property
    def disabled_name(self) -> str:
        return disabled_filename(self.mod.filename)


def _desired(session: Session, modpack: Modpack) -> tuple[list[_Desired], list[str]]:
    """Members resolvable to a library file, plus warnings for the rest."""
    desired: list[_Desired] = []
    warnings: list[str] = []
    for entry in sorted(modpack.entries, key=lambda e: e.mod_id):
        mod = get_mod(session, entry.mod_id)
        if mod is None:
            warnings.append(f"{entry.mod_id}: not in library")
            continue
        if not mod.filename:
            warnings.append(f"{mod.name}: no filename recorded")
            continue
        desired.append(_Desired(mod=mod, disabled=entry.disabled))
    return desired, warnings


def _content_files(root: Path) -> dict[str, set[str]]:
    """Content files present per folder, enabled and disabled forms alike."""
    found: dict[str, set[str]] = {}
    for content_type, folder in CONTENT_FOLDERS.items():
        base = root / folder
        exts = CONTENT_EXTENSIONS[content_type]
        names: set[str] = set()
        if base.is_dir():
            for path in base.iterdir():
                if not path.is_file():
                    continue
                plain = path.name.removesuffix(DISABLED_SUFFIX)
                if plain.lower().endswith(exts):
                    names.add(path.name)
        found[folder] = names
    return found


def _shipped_packs(modpack_id: str) -> dict[str, set[str]]:
    """Pack files supplied by the modpack's overrides rather than the catalog."""
    root = overrides.overrides_path(modpack_id)
    shipped: dict[str, set[str]] = {}
    for folder in (CONTENT_FOLDERS[ContentType.resourcepack], CONTENT_FOLDERS[ContentType.shader]):
        base = root / folder
        shipped[folder] = {p.name for p in base.iterdir() if p.is_file()} if base.is_dir() else set()
    return shipped


def _extra_files(desired: list[_Desired], present: dict[str, set[str]], modpack_id: str) -> list[str]:
    explained: dict[str, set[str]] = {folder: set() for folder in present}
    for d in desired:
        explained[d.folder] |= {d.enabled_name, d.disabled_name}
    for folder, names in _shipped_packs(modpack_id).items():
        explained[folder] |= names
    return sorted(
        f"{folder}/{name}"
        for folder, names in present.items()
        for name in names
        if name not in explained[folder]
    )


def _config_differences(instance: Instance, modpack_id: str, mode: ConfigSyncMode) -> int:
    if mode == ConfigSyncMode.skip:
        return 0
    src = overrides.overrides_path(modpack_id)
    dest = Path(instance.path)
    count = 0
    for rel in overrides.iter_files(src, overrides.OVERRIDE_FOLDERS):
        if mode == ConfigSyncMode.new_only:
            count += not (dest / rel).exists()
        else:
            count += overrides.files_differ(src / rel, dest / rel)
    return count


def check_sync_status(
    session: Session,
    instance: Instance,
    modpack: Modpack,
    *,
    config_sync_mode: ConfigSyncMode = ConfigSyncMode.overwrite,
) -> SyncStatus:
    """Read-only comparison of desired membership against the instance folder."""
    root = Path(instance.path)
    desired, _warnings = _desired(session, modpack)
    present = _content_files(root)

    missing: list[ExpectedFile] = []
    mismatched: list[DisabledMismatch] = []
    for d in desired:
        names = present[d.folder]
        has_enabled = d.enabled_name in names
        has_disabled = d.disabled_name in names
        if d.disabled:
            if has_enabled:
                mismatched.append(
                    DisabledMismatch(
                        mod_id=d.mod.id,
                        name=d.mod.name,
                        filename=d.enabled_name,
                        expected_disabled=True,
                    )
                )
        elif has_disabled and not has_enabled:
            mismatched.append(
                DisabledMismatch(
                    mod_id=d.mod.id,
                    name=d.mod.name,
                    filename=d.disabled_name,
                    expected_disabled=False,
                )
            )
        elif not has_enabled:
            missing.append(
                ExpectedFile(mod_id=d.mod.id, name=d.mod.name, filename=d.enabled_name, folder=d.folder)
            )

    extra = _extra_files(desired, present, modpack.id)
    config_diffs = _config_differences(instance, modpack.id, config_sync_mode)
    loader_mismatch = (instance.loader, instance.loader_version) != (
        modpack.loader,
        modpack.loader_version,
    )
    total = len(missing) + len(extra) + len(mismatched) + config_diffs + int(loader_mismatch)
    return SyncStatus(
        needs_sync=total > 0,
        total_differences=total,
        missing_in_instance=missing,
        extra_in_instance=extra,
        disabled_mismatch=mismatched,
        config_differences=config_diffs,
        loader_version_mismatch=loader_mismatch,
    )


def _download_source(mod: Mod) -> CatalogFile | None:
    if mod.source != ModSource.curseforge and not mod.download_url:
        return None
    return CatalogFile(
        id=int(mod.file_id) if mod.file_id.isdigit() else 0,
        project_id=int(mod.project_id) if mod.project_id.isdigit() else 0,
        file_name=mod.filename,
        file_length=mod.file_size,
        download_url=mod.download_url,
    )


def _remove(path: Path, result: SyncResult) -> bool:
    try:
        path.unlink()
        return True
    except OSError as e:
        result.errors.append(f"Could not remove {path.name}: {e}")
        return False


def _rename(src: Path, dest: Path, result: SyncResult) -> None:
    try:
        src.replace(dest)
        result.mods_renamed += 1
    except OSError as e:
        result.errors.append(f"Could not rename {src.name}: {e}")


async def sync_modpack_to_instance(
    session: Session,
    catalog: CatalogClient,
    instance: Instance,
    modpack: Modpack,
    *,
    config_sync_mode: ConfigSyncMode = ConfigSyncMode.overwrite,
    clear_existing: bool = False,
    batch_size: int = 5,
    on_progress: ProgressCallback = noop_progress,
) -> SyncResult:
    """Bring the instance folder in line with the modpack.

    Per-file failures are collected in ``errors``; only failing to prepare the
    instance folder itself makes the result unsuccessful.
    """
    root = Path(instance.path)
    result = SyncResult(success=True)
    try:
        for folder in CONTENT_FOLDERS.values():
            (root / folder).mkdir(parents=True, exist_ok=True)
    except OSError as e:
        logger.error("Sync: instance folder %s unusable: %s", root, e)
        result.success = False
        result.errors.append(f"Instance folder unusable: {e}")
        return result

    desired, warnings = _desired(session, modpack)
    result.warnings.extend(warnings)
    present = _content_files(root)

    # Unexplained jars always go; user packs only when clearing
    mods_folder = CONTENT_FOLDERS[ContentType.mod]
    for rel in _extra_files(desired, present, modpack.id):
        if (clear_existing or rel.startswith(f"{mods_folder}/")) and _remove(root / rel, result):
            result.mods_removed += 1
            logger.info("Sync: removed %s", rel)

    for d in (d for d in desired if d.disabled):
        enabled, disabled = root / d.folder / d.enabled_name, root / d.folder / d.disabled_name
        if enabled.exists():
            if disabled.exists():
                if _remove(enabled, result):
                    result.mods_removed += 1
            else:
                _rename(enabled, disabled, result)

    for d in (d for d in desired if not d.disabled):
        enabled, disabled = root / d.folder / d.enabled_name, root / d.folder / d.disabled_name
        if disabled.exists():
            if enabled.exists():
                if _remove(disabled, result):
                    result.mods_removed += 1
            else:
                _rename(disabled, enabled, result)

    # Older files of a member's project, in either form
    for d in desired:
        keep = {d.enabled_name, d.disabled_name}
        for other in find_by_project(session, d.mod.project_key):
            if other.id == d.mod.id or not other.filename:
                continue
            for name in (other.filename, disabled_filename(other.filename)):
                path = root / d.folder / name
                if name not in keep and path.exists() and _remove(path, result):
                    result.mods_removed += 1
                    logger.info("Sync: removed stale %s for %s", name, d.mod.name)

    queue: list[tuple[_Desired, Path]] = []
    for d in desired:
        enabled, disabled = root / d.folder / d.enabled_name, root / d.folder / d.disabled_name
        target = disabled if d.disabled else enabled
        if target.exists():
            result.mods_skipped += 1
        else:
            queue.append((d, target))

    done = 0
    total = len(queue)

    async def _fetch(d: _Desired, target: Path) -> None:
        nonlocal done
        source = _download_source(d.mod)
        try:
            if source is None:
                result.errors.append(f"{d.mod.name}: no download source")
                return
            downloaded = await catalog.download_file(source, target)
            if downloaded != target:
                downloaded.replace(target)
            result.mods_downloaded += 1
        except (ExternalServiceError, OSError) as e:
            logger.warning("Sync: download failed for %s: %s", d.mod.name, e)
            result.errors.append(f"{d.mod.name}: {e}")
        finally:
            done += 1
            on_progress("downloading", done, total, d.mod.name)

    for start in range(0, total, batch_size):
        await asyncio.gather(*(_fetch(d, t) for d, t in queue[start : start + batch_size]))

    copied, skipped, errors = overrides.copy_tree(
        overrides.overrides_path(modpack.id),
        root,
        overrides.OVERRIDE_FOLDERS,
        config_sync_mode,
        on_file=lambda i, n, path: on_progress("configs", i, n, path),
    )
    result.configs_copied = copied
    result.configs_skipped = skipped
    result.errors.extend(errors)

    instance.game_version = modpack.game_version
    instance.loader = modpack.loader
    instance.loader_version = modpack.loader_version
    instance.last_synced_at = datetime.now(UTC)
    session.add(instance)
    session.commit()

    logger.info(
        "Synced '%s' to instance '%s': %d downloaded, %d skipped, %d removed, %d errors",
        modpack.name,
        instance.name,
        result.mods_downloaded,
        result.mods_skipped,
        result.mods_removed,
        len(result.errors),
    )
    return result
