"""Two-phase import of external manifests into the local library.

Attempt: every reference whose exact file is already in the library is
reused, every project unknown to the library is fetched and added, and every
project the library holds under a *different* file becomes a conflict.
Unambiguous references are bound to the modpack immediately.

Pause: if conflicts were found, the remaining references are persisted in
``pending_imports`` keyed by the modpack id and returned to the caller.

Resolve: per conflict the caller picks ``use_existing`` or ``use_new``.
Decisions already applied are skipped, so resolving twice is harmless.
"""

from __future__ import annotations

import json
import logging
import zipfile
from pathlib import Path

from sqlmodel import Session

from modpack_manager.catalog.base import CatalogClient
from modpack_manager.errors import ExternalServiceError, NotFoundError
from modpack_manager.identity import ModRef
from modpack_manager.models.modpack import Modpack, ModpackEntry
from modpack_manager.models.pending_import import PendingImport
from modpack_manager.schemas.imports import (
    ConflictResolution,
    ImportConflict,
    ImportConflictOutcome,
    ImportFailed,
    ImportOk,
    ImportOutcome,
    ImportSummary,
    IncomingMod,
    IncomingModpack,
    PendingImportOut,
    ResolutionChoice,
)
from modpack_manager.schemas.mod import ModCreate
from modpack_manager.schemas.modpack import ModpackCreate
from modpack_manager.services import overrides
from modpack_manager.services.library_service import (
    add_mod,
    fetch_catalog_mod,
    find_by_project,
    get_mod,
)
from modpack_manager.services.manifest_service import (
    cf_to_incoming,
    native_to_incoming,
    parse_native_manifest,
    read_pack_archive,
)
from modpack_manager.services.modpack_service import (
    create_modpack,
    find_by_share_code,
    get_entry,
    get_entry_for_project,
    get_modpack_or_raise,
    touch,
)
from modpack_manager.services.progress import ProgressCallback, noop_progress
from modpack_manager.services.version_service import (
    import_version_history,
    initialize_version_control,
    list_versions,
)

logger = logging.getLogger(__name__)


async def _acquire(
    session: Session,
    catalog: CatalogClient,
    inc: IncomingMod,
    modpack: Modpack,
    summary: ImportSummary,
) -> str | None:
    """Add ``inc`` to the library from the catalog; returns the mod id or None."""
    ref = ModRef(inc.source, inc.project_id, inc.file_id)
    try:
        data = await fetch_catalog_mod(
            catalog, ref, loader=modpack.loader, game_version=modpack.game_version
        )
    except (NotFoundError, ExternalServiceError) as e:
        if inc.name and inc.filename:
            # The manifest carries enough metadata to record the file without the catalog
            summary.warnings.append(f"{inc.name}: catalog lookup failed ({e}), used manifest data")
            data = ModCreate(
                source=inc.source,
                project_id=inc.project_id,
                file_id=inc.file_id,
                name=inc.name,
                version=inc.version,
                game_version=modpack.game_version,
                loader=modpack.loader,
                content_type=inc.content_type,
                filename=inc.filename,
            )
        else:
            logger.warning("Import: could not resolve %s: %s", inc.mod_id, e)
            summary.mods_failed += 1
            summary.errors.append(f"{inc.name or inc.mod_id}: {e}")
            return None
    mod = add_mod(session, data, commit=False)
    summary.mods_added += 1
    return mod.id


def _bind(
    session: Session,
    modpack: Modpack,
    mod_id: str,
    inc: IncomingMod,
    summary: ImportSummary,
) -> bool:
    """Make ``mod_id`` the modpack's member for ``inc``'s project, with its flags.

    Locked members are left as they are, including a locked member of the same
    project under another file.
    """
    same = get_entry(modpack, mod_id)
    if same is not None and same.locked:
        # Locked members keep their local flags
        return True
    current = get_entry_for_project(modpack, inc.project_key)
    if current is not None and current.mod_id != mod_id:
        if current.locked:
            summary.warnings.append(
                f"{inc.name or inc.mod_id}: kept locked {current.mod_id} instead of {mod_id}"
            )
            return False
        modpack.entries.remove(current)
        session.delete(current)
        session.flush()

    entry = get_entry(modpack, mod_id)
    if entry is None:
        entry = ModpackEntry(modpack_id=modpack.id, mod_id=mod_id, project_key=inc.project_key)
        modpack.entries.append(entry)
    entry.disabled = inc.disabled
    entry.locked = inc.locked
    entry.note = inc.note
    session.add(entry)
    return True


def _apply_metadata(modpack: Modpack, incoming: IncomingModpack) -> None:
    modpack.game_version = incoming.game_version or modpack.game_version
    modpack.loader = incoming.loader or modpack.loader
    modpack.loader_version = incoming.loader_version or modpack.loader_version
    if incoming.description:
        modpack.description = incoming.description
    if incoming.source_project_id:
        modpack.source_project_id = incoming.source_project_id
        modpack.source_file_id = incoming.source_file_id
    touch(modpack)


def _finalize(
    session: Session,
    modpack: Modpack,
    incoming: IncomingModpack,
    initialize_history: bool,
) -> None:
    if not initialize_history or list_versions(session, modpack.id):
        return
    if incoming.version_history and incoming.version_history.versions:
        import_version_history(session, modpack, incoming.version_history)
        session.commit()
    else:
        initialize_version_control(session, modpack, f"Imported {incoming.name}")


def _validate(incoming: IncomingModpack) -> str | None:
    if not incoming.name.strip():
        return "Manifest has no modpack name"
    seen: set[str] = set()
    for inc in incoming.mods:
        if inc.project_key in seen:
            return f"Manifest lists project {inc.project_key} more than once"
        seen.add(inc.project_key)
    return None


async def import_manifest(
    session: Session,
    catalog: CatalogClient,
    incoming: IncomingModpack,
    *,
    target_modpack_id: str | None = None,
    initialize_history: bool = True,
    on_progress: ProgressCallback = noop_progress,
) -> ImportOutcome:
    """Attempt phase of the import protocol.

    With ``target_modpack_id`` the manifest replaces that modpack's
    membership (members absent from the manifest are removed unless locked).
    Otherwise a modpack with the same share code is updated, or a new one is
    created.
    """
    if error := _validate(incoming):
        return ImportFailed(error=error)

    modpack: Modpack | None = None
    if target_modpack_id:
        modpack = session.get(Modpack, target_modpack_id)
        if modpack is None:
            return ImportFailed(error=f"Modpack '{target_modpack_id}' not found")
    elif incoming.share_code:
        modpack = find_by_share_code(session, incoming.share_code)

    replace_membership = modpack is not None
    if modpack is None:
        modpack = create_modpack(
            session,
            ModpackCreate(
                name=incoming.name,
                version=incoming.version,
                description=incoming.description,
                game_version=incoming.game_version,
                loader=incoming.loader,
                loader_version=incoming.loader_version,
            ),
            commit=False,
        )
        modpack.share_code = incoming.share_code
        session.flush()

    if session.get(PendingImport, modpack.id):
        return ImportFailed(
            error="An import for this modpack is waiting for conflict resolution",
            modpack_id=modpack.id,
        )

    _apply_metadata(modpack, incoming)
    summary = ImportSummary(mods_total=len(incoming.mods))
    conflicts: list[ImportConflict] = []
    waiting: list[IncomingMod] = []
    bound: list[str] = []

    total = len(incoming.mods)
    for i, inc in enumerate(incoming.mods, 1):
        on_progress("importing", i, total, inc.name or inc.mod_id)
        if get_mod(session, inc.mod_id):
            summary.mods_reused += 1
            if _bind(session, modpack, inc.mod_id, inc, summary):
                bound.append(inc.mod_id)
            continue

        others = find_by_project(session, inc.project_key)
        if others:
            member = get_entry_for_project(modpack, inc.project_key)
            existing = next((m for m in others if member and m.id == member.mod_id), others[0])
            conflicts.append(
                ImportConflict(
                    mod_name=inc.name or existing.name,
                    source=inc.source,
                    project_id=inc.project_id,
                    existing_file_id=existing.file_id,
                    new_file_id=inc.file_id,
                    existing_mod_id=existing.id,
                    new_mod_id=inc.mod_id,
                )
            )
            waiting.append(inc)
            continue

        mod_id = await _acquire(session, catalog, inc, modpack, summary)
        if mod_id and _bind(session, modpack, mod_id, inc, summary):
            bound.append(mod_id)

    if replace_membership:
        wanted = {inc.project_key for inc in incoming.mods}
        for entry in list(modpack.entries):
            if entry.project_key in wanted:
                continue
            if entry.locked:
                summary.warnings.append(f"Kept locked member {entry.mod_id}")
                continue
            modpack.entries.remove(entry)
            session.delete(entry)
            summary.mods_removed += 1

    session.add(modpack)
    if conflicts:
        session.add(
            PendingImport(
                modpack_id=modpack.id,
                incoming=json.dumps([m.model_dump(mode="json") for m in waiting]),
                conflicts=json.dumps([c.model_dump(mode="json") for c in conflicts]),
                resolved_mod_ids=json.dumps(bound),
                manifest=incoming.model_dump_json(exclude={"mods"}),
                initialize_history=initialize_history,
            )
        )
        session.commit()
        logger.info(
            "Import into '%s' paused on %d conflicts (%d bound)",
            modpack.name,
            len(conflicts),
            len(bound),
        )
        return ImportConflictOutcome(modpack_id=modpack.id, conflicts=conflicts, summary=summary)

    session.commit()
    _finalize(session, modpack, incoming, initialize_history)
    logger.info(
        "Imported '%s': %d reused, %d added, %d failed",
        modpack.name,
        summary.mods_reused,
        summary.mods_added,
        summary.mods_failed,
    )
    return ImportOk(modpack_id=modpack.id, summary=summary)


def get_pending_import(session: Session, modpack_id: str) -> PendingImportOut | None:
    pending = session.get(PendingImport, modpack_id)
    if pending is None:
        return None
    return PendingImportOut(
        modpack_id=modpack_id,
        conflicts=[ImportConflict.model_validate(c) for c in json.loads(pending.conflicts)],
        resolved_count=len(json.loads(pending.resolved_mod_ids)),
        created_at=pending.created_at,
    )


def discard_pending_import(session: Session, modpack_id: str) -> None:
    """Drop outstanding conflicts; members bound so far stay in the modpack."""
    pending = session.get(PendingImport, modpack_id)
    if pending is None:
        raise NotFoundError("Pending import", modpack_id)
    session.delete(pending)
    session.commit()
    logger.info("Discarded pending import for %s", modpack_id)


async def resolve_conflicts(
    session: Session,
    catalog: CatalogClient,
    modpack_id: str,
    resolutions: list[ConflictResolution],
    *,
    on_progress: ProgressCallback = noop_progress,
) -> ImportOutcome:
    """Resolve phase: apply caller decisions to a paused import.

    Conflicts without a decision stay pending. Once none remain, the pending
    record is removed and the import is finalized.
    """
    modpack = get_modpack_or_raise(session, modpack_id)
    pending = session.get(PendingImport, modpack_id)
    if pending is None:
        return ImportOk(modpack_id=modpack_id)

    conflicts = [ImportConflict.model_validate(c) for c in json.loads(pending.conflicts)]
    waiting = {
        m.project_key: m
        for m in (IncomingMod.model_validate(x) for x in json.loads(pending.incoming))
    }
    bound: list[str] = json.loads(pending.resolved_mod_ids)
    decisions = {r.project_key: r.choice for r in resolutions}
    summary = ImportSummary(mods_total=len(conflicts))

    remaining: list[ImportConflict] = []
    for i, conflict in enumerate(conflicts, 1):
        choice = decisions.get(conflict.project_key)
        inc = waiting.get(conflict.project_key)
        if choice is None or inc is None:
            remaining.append(conflict)
            continue
        on_progress("resolving", i, len(conflicts), conflict.mod_name)

        if choice == ResolutionChoice.use_existing:
            mod_id: str | None = conflict.existing_mod_id
            if get_mod(session, mod_id) is None:
                summary.errors.append(f"{conflict.mod_name}: existing file no longer in library")
                remaining.append(conflict)
                continue
            summary.mods_reused += 1
        elif get_mod(session, conflict.new_mod_id):
            mod_id = conflict.new_mod_id
            summary.mods_reused += 1
        else:
            mod_id = await _acquire(session, catalog, inc, modpack, summary)
            if mod_id is None:
                remaining.append(conflict)
                continue

        if _bind(session, modpack, mod_id, inc, summary):
            bound.append(mod_id)
        del waiting[conflict.project_key]
        # Persist after each decision so a retried resolve skips it
        pending.conflicts = json.dumps(
            [c.model_dump(mode="json") for c in remaining + conflicts[i:]]
        )
        pending.incoming = json.dumps([m.model_dump(mode="json") for m in waiting.values()])
        pending.resolved_mod_ids = json.dumps(bound)
        session.add(pending)
        session.commit()

    touch(modpack)
    session.add(modpack)
    if remaining:
        pending.conflicts = json.dumps([c.model_dump(mode="json") for c in remaining])
        session.add(pending)
        session.commit()
        return ImportConflictOutcome(modpack_id=modpack_id, conflicts=remaining, summary=summary)

    incoming = IncomingModpack.model_validate_json(pending.manifest)
    initialize_history = pending.initialize_history
    session.delete(pending)
    session.commit()
    _finalize(session, modpack, incoming, initialize_history)
    logger.info("Resolved all conflicts for '%s'", modpack.name)
    return ImportOk(modpack_id=modpack_id, summary=summary)


async def import_native_manifest(
    session: Session,
    catalog: CatalogClient,
    raw: str | bytes | dict,
    *,
    on_progress: ProgressCallback = noop_progress,
) -> ImportOutcome:
    """Validate, migrate and import a native manifest.

    Raises:
        ManifestValidationError: Before any mutation, for malformed or
            checksum-mismatched input.
    """
    manifest = parse_native_manifest(raw)
    return await import_manifest(session, catalog, native_to_incoming(manifest), on_progress=on_progress)


async def import_pack_archive(
    session: Session,
    catalog: CatalogClient,
    path: Path,
    *,
    name: str | None = None,
    on_progress: ProgressCallback = noop_progress,
) -> ImportOutcome:
    """Import a third-party pack archive and store its overrides folder."""
    manifest = read_pack_archive(path)
    incoming = cf_to_incoming(manifest, name)
    # History starts once the overrides are in place so v1 captures them
    outcome = await import_manifest(
        session, catalog, incoming, initialize_history=False, on_progress=on_progress
    )
    if isinstance(outcome, ImportFailed) or not outcome.modpack_id:
        return outcome

    with zipfile.ZipFile(path) as zf:
        overrides.save_overrides_from_zip(outcome.modpack_id, zf, manifest.overrides or "overrides")
    if isinstance(outcome, ImportOk):
        _finalize(session, get_modpack_or_raise(session, outcome.modpack_id), incoming, True)
    else:
        pending = session.get(PendingImport, outcome.modpack_id)
        pending.initialize_history = True
        session.add(pending)
        session.commit()
    return outcome
