"""Per-modpack override tree and its per-version snapshots.

Layout under ``settings.overrides_dir``::

    <modpack_id>/config/...           live override files
    <modpack_id>/kubejs/...
    <modpack_id>/snapshots/<version_id>-<ts>/config/...
"""

from __future__ import annotations

import filecmp
import hashlib
import logging
import shutil
import zipfile
from collections.abc import Iterator
from datetime import UTC, datetime
from pathlib import Path, PurePosixPath

from modpack_manager.config import settings
from modpack_manager.constants import CONFIG_FOLDERS, OVERRIDE_PACK_FOLDERS
from modpack_manager.schemas.instance import ConfigSyncMode

logger = logging.getLogger(__name__)

OVERRIDE_FOLDERS = (*CONFIG_FOLDERS, *OVERRIDE_PACK_FOLDERS)
SNAPSHOTS_DIR = "snapshots"


def overrides_path(modpack_id: str) -> Path:
    return settings.overrides_dir / modpack_id


def snapshot_path(modpack_id: str, snapshot_id: str) -> Path:
    return overrides_path(modpack_id) / SNAPSHOTS_DIR / snapshot_id


def iter_files(root: Path, folders: tuple[str, ...] = OVERRIDE_FOLDERS) -> Iterator[Path]:
    """Yield paths relative to ``root`` for every file under ``folders``, sorted."""
    for folder in folders:
        base = root / folder
        if not base.is_dir():
            continue
        for path in sorted(base.rglob("*")):
            if path.is_file():
                yield path.relative_to(root)


def has_overrides(modpack_id: str) -> bool:
    return next(iter_files(overrides_path(modpack_id)), None) is not None


def tree_hash(root: Path, folders: tuple[str, ...] = OVERRIDE_FOLDERS) -> str | None:
    """Content hash over relative paths and bytes; None for an empty tree."""
    digest = hashlib.sha256()
    found = False
    for rel in iter_files(root, folders):
        found = True
        digest.update(rel.as_posix().encode())
        digest.update(b"\0")
        digest.update((root / rel).read_bytes())
        digest.update(b"\0")
    return digest.hexdigest() if found else None


def live_hash(modpack_id: str) -> str | None:
    return tree_hash(overrides_path(modpack_id))


def snapshot_hash(modpack_id: str, snapshot_id: str | None) -> str | None:
    if not snapshot_id:
        return None
    return tree_hash(snapshot_path(modpack_id, snapshot_id))


def _copy_folders(src: Path, dest: Path, folders: tuple[str, ...]) -> int:
    copied = 0
    for rel in iter_files(src, folders):
        target = dest / rel
        target.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(src / rel, target)
        copied += 1
    return copied


def create_config_snapshot(modpack_id: str, version_id: str) -> str | None:
    """Copy the live override tree aside; returns the snapshot id or None if empty."""
    root = overrides_path(modpack_id)
    if not has_overrides(modpack_id):
        return None
    ts = datetime.now(UTC).strftime("%Y%m%d%H%M%S%f")
    snapshot_id = f"{version_id}-{ts}"
    copied = _copy_folders(root, snapshot_path(modpack_id, snapshot_id), OVERRIDE_FOLDERS)
    logger.info("Config snapshot %s: %d files", snapshot_id, copied)
    return snapshot_id


def restore_config_snapshot(modpack_id: str, snapshot_id: str | None) -> bool:
    """Replace the live override tree with a stored snapshot.

    ``None`` stands for a version committed with an empty tree: the live
    override folders are cleared.
    """
    src = snapshot_path(modpack_id, snapshot_id) if snapshot_id else None
    if src is not None and not src.is_dir():
        logger.warning("Config snapshot %s missing for %s", snapshot_id, modpack_id)
        return False
    root = overrides_path(modpack_id)
    for folder in OVERRIDE_FOLDERS:
        shutil.rmtree(root / folder, ignore_errors=True)
    copied = _copy_folders(src, root, OVERRIDE_FOLDERS) if src is not None else 0
    logger.info("Restored config snapshot %s (%d files)", snapshot_id or "<empty>", copied)
    return True


def delete_overrides(modpack_id: str) -> None:
    shutil.rmtree(overrides_path(modpack_id), ignore_errors=True)


def save_overrides_from_zip(modpack_id: str, zf: zipfile.ZipFile, prefix: str = "overrides") -> int:
    """Extract ``<prefix>/`` members of a pack archive into the override tree.

    Members that would escape the tree (absolute or ``..`` paths) are skipped.
    """
    root = overrides_path(modpack_id)
    extracted = 0
    for info in zf.infolist():
        if info.is_dir():
            continue
        parts = PurePosixPath(info.filename.replace("\\", "/")).parts
        if not parts or parts[0] != prefix or len(parts) < 2:
            continue
        rel = PurePosixPath(*parts[1:])
        if rel.is_absolute() or ".." in rel.parts:
            logger.warning("Skipping unsafe archive path %s", info.filename)
            continue
        target = root / Path(*rel.parts)
        target.parent.mkdir(parents=True, exist_ok=True)
        with zf.open(info) as src, open(target, "wb") as dst:
            shutil.copyfileobj(src, dst)
        extracted += 1
    logger.info("Extracted %d override files for %s", extracted, modpack_id)
    return extracted


def files_differ(a: Path, b: Path) -> bool:
    """Byte-exact comparison; a missing side counts as a difference."""
    if not a.is_file() or not b.is_file():
        return True
    return not filecmp.cmp(a, b, shallow=False)


def copy_tree(
    src_root: Path,
    dest_root: Path,
    folders: tuple[str, ...],
    mode: ConfigSyncMode,
    on_file=None,
) -> tuple[int, int, list[str]]:
    """Merge ``folders`` from ``src_root`` into ``dest_root`` per ``mode``.

    Returns ``(copied, skipped, errors)``. A failing file is recorded and the
    remaining files are still processed.
    """
    if mode == ConfigSyncMode.skip:
        return 0, 0, []
    files = list(iter_files(src_root, folders))
    copied = skipped = 0
    errors: list[str] = []
    for i, rel in enumerate(files, 1):
        if on_file:
            on_file(i, len(files), rel.as_posix())
        target = dest_root / rel
        if mode == ConfigSyncMode.new_only and target.exists():
            skipped += 1
            continue
        if mode == ConfigSyncMode.overwrite and not files_differ(src_root / rel, target):
            skipped += 1
            continue
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(src_root / rel, target)
            copied += 1
        except OSError as e:
            logger.warning("Could not copy %s: %s", rel, e)
            errors.append(f"{rel.as_posix()}: {e}")
    return copied, skipped, errors
