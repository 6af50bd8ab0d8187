"""Native share manifests and third-party pack manifests.

Every native manifest goes through :func:`migrate_native_manifest` before
use, so the rest of the code only sees the current schema. Checksums are
derived from manifest content alone, which lets a subscriber compare a
fetched manifest against the value recorded on its last sync.
"""

from __future__ import annotations

import hashlib
import json
import logging
import re
import uuid
import zipfile
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from pydantic import ValidationError
from sqlmodel import Session, select

from modpack_manager.constants import MANIFEST_VERSION, SHARE_CODE_PREFIX, ContentType
from modpack_manager.errors import ManifestValidationError
from modpack_manager.identity import ModSource, parse_mod_id, project_key_of
from modpack_manager.models.mod import Mod
from modpack_manager.models.modpack import Modpack
from modpack_manager.schemas.imports import IncomingMod, IncomingModpack
from modpack_manager.schemas.manifest import (
    CFManifest,
    ExportResult,
    ManifestMod,
    ManifestModpackInfo,
    ManifestStats,
    ManifestVersion,
    ManifestVersionHistory,
    NativeManifest,
    ProjectNote,
    ProjectRef,
)
from modpack_manager.services.modpack_service import touch
from modpack_manager.services.version_service import list_versions, load_changes, load_snapshot

logger = logging.getLogger(__name__)

_LOADER_ID_RE = re.compile(r"^(fabric-loader|fabric|forge|neoforge|quilt)-(.+)$", re.IGNORECASE)


def _short_hash(text: str, length: int) -> str:
    return hashlib.sha256(text.encode()).hexdigest()[:length]


def generate_share_code() -> str:
    return f"{SHARE_CODE_PREFIX}-{_short_hash(uuid.uuid4().hex, 8).upper()}"


# --- Checksums ---


def version_history_hash(history: ManifestVersionHistory | None) -> str | None:
    if history is None or not history.versions:
        return None
    data = json.dumps(
        [
            {
                "id": v.id,
                "tag": v.tag,
                "message": v.message,
                "created_at": v.created_at,
                "config_snapshot_id": v.config_snapshot_id,
            }
            for v in history.versions
        ],
        separators=(",", ":"),
    )
    return _short_hash(data, 16)


def compute_checksum(manifest: NativeManifest) -> str:
    """Short content checksum over members, flags, loader and history."""
    refs = [(m, m.ref) for m in manifest.mods]
    ids = sorted(r.mod_id for _, r in refs if r)
    mods_hash = _short_hash("".join(ids), 16)
    disabled_hash = _short_hash(",".join(sorted(manifest.disabled_mods)), 8)
    locked_hash = _short_hash(",".join(sorted(manifest.locked_mods)), 8)
    info = manifest.modpack
    metadata_hash = _short_hash(f"{info.loader}-{info.loader_version}-{info.game_version}", 8)
    content_hash = _short_hash(
        ",".join(sorted(f"{r.mod_id}:{m.content_type}" for m, r in refs if r)), 8
    )
    notes_hash = _short_hash(
        ",".join(sorted(f"{n.project_key}:{n.note}" for n in manifest.mod_notes_by_project)), 8
    )
    combined = (
        f"{mods_hash}-{disabled_hash}-{locked_hash}-{metadata_hash}-{content_hash}"
        f"-{notes_hash}-{manifest.version_history_hash or 'none'}"
    )
    return _short_hash(combined, 16)


def verify_checksum(manifest: NativeManifest) -> None:
    """Raise if the manifest's declared checksum does not match its content.

    Manifests without a checksum (older exports) are accepted as-is.
    """
    if manifest.version_history_hash and manifest.version_history is not None:
        if version_history_hash(manifest.version_history) != manifest.version_history_hash:
            raise ManifestValidationError("Version history does not match its hash")
    if not manifest.checksum:
        return
    expected = compute_checksum(manifest)
    if expected != manifest.checksum:
        raise ManifestValidationError(
            f"Checksum mismatch: manifest says {manifest.checksum}, content gives {expected}"
        )


# --- Migration / parsing ---


def _by_project(ids: list[str], names: dict[str, str]) -> list[dict[str, Any]]:
    refs = []
    for mod_id in ids:
        ref = parse_mod_id(mod_id)
        if ref is None:
            continue
        entry: dict[str, Any] = {"name": names.get(mod_id, "")}
        if ref.source == ModSource.curseforge:
            entry["cf_project_id"] = int(ref.project_id)
        else:
            entry["mr_project_id"] = ref.project_id
        refs.append(entry)
    return refs


def migrate_native_manifest(raw: dict[str, Any]) -> NativeManifest:
    """Normalize any supported native manifest shape into the current schema.

    Raises:
        ManifestValidationError: If required sections are missing, the schema
            version is unknown, or fields have the wrong types.
    """
    if not isinstance(raw, dict):
        raise ManifestValidationError("Manifest must be a JSON object")
    if "modpack" not in raw or "mods" not in raw:
        raise ManifestValidationError("Manifest is missing 'modpack' or 'mods'")
    if not raw.get("share_code"):
        raise ManifestValidationError("Manifest is missing 'share_code'")

    data = dict(raw)
    version = str(data.get("manifest_version") or "2.0")
    if version.split(".")[0] != "2":
        raise ManifestValidationError(f"Unsupported manifest version {version}")

    if version == "2.0":
        history = data.get("version_history")
        if isinstance(history, list):
            data["version_history"] = {"versions": history}
        names: dict[str, str] = {}
        for m in data.get("mods") or []:
            if not isinstance(m, dict):
                continue
            pid = m.get("cf_project_id", m.get("project_id"))
            fid = m.get("cf_file_id", m.get("file_id"))
            if pid is not None and fid is not None:
                names[f"cf-{pid}-{fid}"] = m.get("name", "")
        if not data.get("disabled_mods_by_project"):
            data["disabled_mods_by_project"] = _by_project(data.get("disabled_mods") or [], names)
        if not data.get("locked_mods_by_project"):
            data["locked_mods_by_project"] = _by_project(data.get("locked_mods") or [], names)
        logger.info("Migrated manifest %s from 2.0", data.get("share_code"))

    data["manifest_version"] = MANIFEST_VERSION
    try:
        return NativeManifest.model_validate(data)
    except ValidationError as e:
        raise ManifestValidationError(f"Invalid manifest: {e.error_count()} errors") from e


def parse_native_manifest(raw: str | bytes | dict[str, Any], *, verify: bool = True) -> NativeManifest:
    if isinstance(raw, str | bytes):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ManifestValidationError(f"Manifest is not valid JSON: {e}") from e
    manifest = migrate_native_manifest(raw)  # type: ignore[arg-type]
    if verify:
        verify_checksum(manifest)
    return manifest


def native_to_incoming(manifest: NativeManifest) -> IncomingModpack:
    disabled = {r.project_key for r in manifest.disabled_mods_by_project} | {
        project_key_of(m) for m in manifest.disabled_mods
    }
    locked = {r.project_key for r in manifest.locked_mods_by_project} | {
        project_key_of(m) for m in manifest.locked_mods
    }
    notes = {n.project_key: n.note for n in manifest.mod_notes_by_project}

    mods: list[IncomingMod] = []
    for m in manifest.mods:
        ref = m.ref
        if ref is None:
            logger.warning("Skipping manifest mod without provenance: %s", m.name)
            continue
        try:
            content_type = ContentType(m.content_type)
        except ValueError:
            content_type = ContentType.mod
        mods.append(
            IncomingMod(
                source=ref.source,
                project_id=ref.project_id,
                file_id=ref.file_id,
                name=m.name,
                version=m.version,
                filename=m.filename,
                content_type=content_type,
                disabled=ref.project_key in disabled,
                locked=ref.project_key in locked,
                note=notes.get(ref.project_key),
            )
        )
    info = manifest.modpack
    return IncomingModpack(
        name=info.name,
        version=info.version,
        description=info.description,
        game_version=info.game_version,
        loader=info.loader,
        loader_version=info.loader_version,
        share_code=manifest.share_code,
        checksum=manifest.checksum,
        source_project_id=str(info.cf_project_id) if info.cf_project_id else None,
        source_file_id=str(info.cf_file_id) if info.cf_file_id else None,
        mods=mods,
        version_history=manifest.version_history,
    )


# --- Export ---


def _manifest_history(
    session: Session, modpack: Modpack, mode: str
) -> ManifestVersionHistory | None:
    if mode == "none":
        return None
    versions = list_versions(session, modpack.id)
    if not versions:
        return None
    if mode == "current":
        current = next(
            (v for v in versions if v.version_id == modpack.current_version_id), versions[-1]
        )
        versions = [current]
    out: list[ManifestVersion] = []
    for v in versions:
        snap = load_snapshot(v)
        out.append(
            ManifestVersion(
                id=v.version_id,
                tag=v.tag,
                message=v.message,
                created_at=v.created_at.isoformat(),
                parent_id=v.parent_id,
                mod_ids=snap.state.mod_ids,
                disabled_mod_ids=snap.state.disabled,
                locked_mod_ids=snap.state.locked,
                notes=snap.state.notes,
                loader=snap.state.loader,
                loader_version=snap.state.loader_version,
                game_version=snap.game_version,
                mod_snapshots=snap.mods,
                changes=load_changes(v),
                config_snapshot_id=v.config_snapshot_id,
            )
        )
    return ManifestVersionHistory(
        modpack_id=modpack.id,
        current_version_id=modpack.current_version_id,
        versions=out,
    )


def _manifest_mod(mod: Mod) -> ManifestMod:
    if mod.source == ModSource.modrinth:
        return ManifestMod(
            name=mod.name,
            version=mod.version,
            source=mod.source,
            mr_project_id=mod.project_id,
            mr_version_id=mod.file_id,
            content_type=mod.content_type,
            filename=mod.filename,
        )
    return ManifestMod(
        name=mod.name,
        version=mod.version,
        source=mod.source,
        cf_project_id=int(mod.project_id),
        cf_file_id=int(mod.file_id),
        content_type=mod.content_type,
        filename=mod.filename,
    )


def _project_ref(mod: Mod) -> ProjectRef:
    if mod.source == ModSource.modrinth:
        return ProjectRef(mr_project_id=mod.project_id, name=mod.name)
    return ProjectRef(cf_project_id=int(mod.project_id), name=mod.name)


def build_native_manifest(
    session: Session, modpack: Modpack, share_code: str, history_mode: str = "full"
) -> NativeManifest:
    """Manifest for the live state, without touching the modpack."""
    entries = sorted(modpack.entries, key=lambda e: e.project_key)
    ids = [e.mod_id for e in entries]
    library = (
        {m.id: m for m in session.exec(select(Mod).where(Mod.id.in_(ids))).all()} if ids else {}
    )
    present = [e for e in entries if e.mod_id in library]
    for e in entries:
        if e.mod_id not in library:
            logger.warning("Export: %s is not in the library and is left out", e.mod_id)

    history = _manifest_history(session, modpack, history_mode)
    manifest = NativeManifest(
        share_code=share_code,
        version_history_hash=version_history_hash(history),
        exported_at=datetime.now(UTC).isoformat(),
        modpack=ManifestModpackInfo(
            name=modpack.name,
            version=modpack.version,
            game_version=modpack.game_version,
            loader=modpack.loader,
            loader_version=modpack.loader_version,
            description=modpack.description,
            cf_project_id=int(modpack.source_project_id) if modpack.source_project_id else None,
            cf_file_id=int(modpack.source_file_id) if modpack.source_file_id else None,
        ),
        mods=[_manifest_mod(library[e.mod_id]) for e in present],
        disabled_mods=[e.mod_id for e in present if e.disabled],
        disabled_mods_by_project=[_project_ref(library[e.mod_id]) for e in present if e.disabled],
        locked_mods=[e.mod_id for e in present if e.locked],
        locked_mods_by_project=[_project_ref(library[e.mod_id]) for e in present if e.locked],
        mod_notes_by_project=[
            ProjectNote(**_project_ref(library[e.mod_id]).model_dump(), note=e.note)
            for e in present
            if e.note
        ],
        stats=ManifestStats(
            mod_count=len(present),
            disabled_count=sum(1 for e in present if e.disabled),
            locked_count=sum(1 for e in present if e.locked),
        ),
        version_history=history,
    )
    manifest.checksum = compute_checksum(manifest)
    return manifest


def export_native_manifest(
    session: Session, modpack: Modpack, history_mode: str = "full"
) -> ExportResult:
    """Export the live state, assigning a share code on first export."""
    if not modpack.share_code:
        modpack.share_code = generate_share_code()
        touch(modpack)
        session.add(modpack)
        session.commit()
    manifest = build_native_manifest(session, modpack, modpack.share_code, history_mode)
    logger.info("Exported '%s' as %s (%d mods)", modpack.name, modpack.share_code, len(manifest.mods))
    return ExportResult(
        share_code=modpack.share_code,
        checksum=manifest.checksum or "",
        manifest=manifest,
    )


# --- Third-party pack manifest ---


def parse_loader_id(loader_id: str) -> tuple[str, str]:
    """``forge-47.2.0`` -> ``("forge", "47.2.0")``; unknown ids keep the raw string."""
    m = _LOADER_ID_RE.match(loader_id.strip())
    if not m:
        return loader_id.strip().lower(), ""
    name = m.group(1).lower()
    if name == "fabric-loader":
        name = "fabric"
    return name, m.group(2)


def parse_cf_manifest(raw: str | bytes | dict[str, Any]) -> CFManifest:
    if isinstance(raw, str | bytes):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ManifestValidationError(f"Pack manifest is not valid JSON: {e}") from e
    try:
        return CFManifest.model_validate(raw)
    except ValidationError as e:
        raise ManifestValidationError(f"Invalid pack manifest: {e.error_count()} errors") from e


def cf_to_incoming(manifest: CFManifest, name: str | None = None) -> IncomingModpack:
    loaders = manifest.minecraft.mod_loaders
    primary = next((lo for lo in loaders if lo.primary), loaders[0] if loaders else None)
    loader, loader_version = parse_loader_id(primary.id) if primary else ("", "")
    return IncomingModpack(
        name=name or manifest.name or "Imported pack",
        version=manifest.version or "1.0.0",
        game_version=manifest.minecraft.version,
        loader=loader,
        loader_version=loader_version,
        mods=[
            IncomingMod(
                project_id=str(f.project_id),
                file_id=str(f.file_id),
                disabled=not f.required,
            )
            for f in manifest.files
        ],
    )


def read_pack_archive(path: Path) -> CFManifest:
    """Read ``manifest.json`` from a pack archive without extracting anything."""
    try:
        with zipfile.ZipFile(path) as zf:
            try:
                raw = zf.read("manifest.json")
            except KeyError as e:
                raise ManifestValidationError("Archive has no manifest.json") from e
    except zipfile.BadZipFile as e:
        raise ManifestValidationError(f"Not a zip archive: {path.name}") from e
    return parse_cf_manifest(raw)


def export_cf_manifest(session: Session, modpack: Modpack, author: str = "") -> dict[str, Any]:
    """Third-party pack manifest for the modpack's catalog members."""
    ids = [e.mod_id for e in modpack.entries]
    library = (
        {m.id: m for m in session.exec(select(Mod).where(Mod.id.in_(ids))).all()} if ids else {}
    )
    files = []
    for entry in sorted(modpack.entries, key=lambda e: e.project_key):
        mod = library.get(entry.mod_id)
        if mod is None or mod.source != ModSource.curseforge:
            continue
        files.append(
            {
                "projectID": int(mod.project_id),
                "fileID": int(mod.file_id),
                "required": not entry.disabled,
            }
        )
    loader_id = f"{modpack.loader}-{modpack.loader_version}" if modpack.loader else ""
    manifest = CFManifest(
        minecraft={
            "version": modpack.game_version,
            "modLoaders": [{"id": loader_id, "primary": True}] if loader_id else [],
        },
        name=modpack.name,
        version=modpack.version,
        author=author,
        files=files,
    )
    return manifest.model_dump(by_alias=True)
