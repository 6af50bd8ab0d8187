"""Per-modpack linear version history: diff, commit, compare and rollback.

Each version stores a full snapshot of membership and flags plus a
denormalized record of every member mod, so a mod later deleted from the
library can still be named and re-acquired. The change list stored with a
version is derived from the diff against its parent and is for display only.

Rollback appends a new version recording the restored state; history is
never rewritten.
"""

from __future__ import annotations

import json
import logging

from sqlmodel import Session, select

from modpack_manager.catalog.base import CatalogClient
from modpack_manager.errors import (
    EmptyCommitError,
    ExternalServiceError,
    NotFoundError,
)
from modpack_manager.identity import ModRef, ModSource, parse_mod_id, project_key_of
from modpack_manager.models.mod import Mod
from modpack_manager.models.modpack import Modpack
from modpack_manager.models.version import ModpackVersion
from modpack_manager.schemas.manifest import ManifestVersionHistory
from modpack_manager.schemas.modpack import ModpackState
from modpack_manager.schemas.version import (
    ChangeType,
    ModpackChange,
    ModSnapshot,
    RollbackFailure,
    RollbackPreview,
    RollbackResult,
    UnsavedChanges,
    VersionDetail,
    VersionHistoryOut,
    VersionOut,
    VersionSnapshot,
)
from modpack_manager.services import instance_service, overrides
from modpack_manager.services.library_service import (
    add_mod,
    fetch_catalog_mod,
    mod_dependencies,
)
from modpack_manager.services.modpack_service import apply_state, get_modpack_state, touch
from modpack_manager.services.progress import ProgressCallback, noop_progress

logger = logging.getLogger(__name__)


# --- Diff ---


def _file_id(mod_id: str) -> str | None:
    ref = parse_mod_id(mod_id)
    return ref.file_id if ref else None


def _loader_label(state: ModpackState) -> str:
    return f"{state.loader} {state.loader_version}".strip()


def diff(
    from_state: ModpackState,
    to_state: ModpackState,
    from_mods: dict[str, ModSnapshot] | None = None,
    to_mods: dict[str, ModSnapshot] | None = None,
) -> list[ModpackChange]:
    """Changes turning ``from_state`` into ``to_state``, matched by project.

    A project present on both sides under different file ids is one
    ``update``, never a remove/add pair. Flag changes are only reported for
    members whose id is unchanged. Output order: updates, removes, adds,
    flag changes, then the loader; each group sorted by project key.
    """
    from_mods = from_mods or {}
    to_mods = to_mods or {}

    def _name(mod_id: str) -> str:
        snap = to_mods.get(mod_id) or from_mods.get(mod_id)
        return snap.name if snap else mod_id

    def _version(mod_id: str, mods: dict[str, ModSnapshot]) -> str | None:
        snap = mods.get(mod_id)
        return snap.version if snap else None

    before = {project_key_of(m): m for m in from_state.mod_ids}
    after = {project_key_of(m): m for m in to_state.mod_ids}

    updates: list[ModpackChange] = []
    removes: list[ModpackChange] = []
    adds: list[ModpackChange] = []
    flags: list[ModpackChange] = []

    from_disabled, to_disabled = set(from_state.disabled), set(to_state.disabled)
    from_locked, to_locked = set(from_state.locked), set(to_state.locked)

    for key in sorted(before.keys() | after.keys()):
        old_id, new_id = before.get(key), after.get(key)
        if new_id is None:
            removes.append(
                ModpackChange(
                    type=ChangeType.remove,
                    mod_id=old_id,
                    mod_name=_name(old_id),
                    project_key=key,
                    previous_version=_version(old_id, from_mods),
                    previous_file_id=_file_id(old_id),
                )
            )
            continue
        if old_id is None:
            adds.append(
                ModpackChange(
                    type=ChangeType.add,
                    mod_id=new_id,
                    mod_name=_name(new_id),
                    project_key=key,
                    new_version=_version(new_id, to_mods),
                    new_file_id=_file_id(new_id),
                )
            )
            continue
        if old_id != new_id:
            updates.append(
                ModpackChange(
                    type=ChangeType.update,
                    mod_id=new_id,
                    previous_mod_id=old_id,
                    mod_name=_name(new_id),
                    project_key=key,
                    previous_version=_version(old_id, from_mods),
                    new_version=_version(new_id, to_mods),
                    previous_file_id=_file_id(old_id),
                    new_file_id=_file_id(new_id),
                )
            )
            continue

        base = {"mod_id": new_id, "mod_name": _name(new_id), "project_key": key}
        was_disabled, is_disabled = new_id in from_disabled, new_id in to_disabled
        if was_disabled != is_disabled:
            flags.append(
                ModpackChange(
                    type=ChangeType.disable if is_disabled else ChangeType.enable, **base
                )
            )
        was_locked, is_locked = new_id in from_locked, new_id in to_locked
        if was_locked != is_locked:
            flags.append(
                ModpackChange(type=ChangeType.lock if is_locked else ChangeType.unlock, **base)
            )
        old_note, new_note = from_state.notes.get(new_id), to_state.notes.get(new_id)
        if old_note != new_note:
            if old_note is None:
                kind = ChangeType.note_add
            elif new_note is None:
                kind = ChangeType.note_remove
            else:
                kind = ChangeType.note_change
            flags.append(
                ModpackChange(type=kind, previous_note=old_note, new_note=new_note, **base)
            )

    changes = updates + removes + adds + flags
    if (from_state.loader, from_state.loader_version) != (
        to_state.loader,
        to_state.loader_version,
    ):
        changes.append(
            ModpackChange(
                type=ChangeType.loader_change,
                mod_name="Mod loader",
                previous_version=_loader_label(from_state),
                new_version=_loader_label(to_state),
            )
        )
    return changes


# --- Storage helpers ---


def load_snapshot(version: ModpackVersion) -> VersionSnapshot:
    return VersionSnapshot.model_validate_json(version.snapshot)


def load_changes(version: ModpackVersion) -> list[ModpackChange]:
    return [ModpackChange.model_validate(c) for c in json.loads(version.changes or "[]")]


def version_to_out(version: ModpackVersion) -> VersionOut:
    snapshot = load_snapshot(version)
    return VersionOut(
        version_id=version.version_id,
        tag=version.tag,
        message=version.message,
        parent_id=version.parent_id,
        created_at=version.created_at,
        mod_count=len(snapshot.state.mod_ids),
        changes=load_changes(version),
        config_snapshot_id=version.config_snapshot_id,
    )


def version_detail(version: ModpackVersion) -> VersionDetail:
    return VersionDetail(
        **version_to_out(version).model_dump(), snapshot=load_snapshot(version)
    )


def list_versions(session: Session, modpack_id: str) -> list[ModpackVersion]:
    return list(
        session.exec(
            select(ModpackVersion)
            .where(ModpackVersion.modpack_id == modpack_id)
            .order_by(ModpackVersion.seq)
        ).all()
    )


def get_version(session: Session, modpack_id: str, version_id: str) -> ModpackVersion | None:
    return session.exec(
        select(ModpackVersion).where(
            ModpackVersion.modpack_id == modpack_id,
            ModpackVersion.version_id == version_id,
        )
    ).first()


def get_version_or_raise(session: Session, modpack_id: str, version_id: str) -> ModpackVersion:
    version = get_version(session, modpack_id, version_id)
    if not version:
        raise NotFoundError("Version", version_id)
    return version


def current_version(session: Session, modpack: Modpack) -> ModpackVersion | None:
    if not modpack.current_version_id:
        return None
    return get_version(session, modpack.id, modpack.current_version_id)


def get_history(session: Session, modpack: Modpack) -> VersionHistoryOut:
    return VersionHistoryOut(
        modpack_id=modpack.id,
        current_version_id=modpack.current_version_id,
        versions=[version_to_out(v) for v in list_versions(session, modpack.id)],
    )


def next_tag(tag: str) -> str:
    """``1.0.0`` -> ``1.0.1``; anything not ``x.y.z`` gets ``.1`` appended."""
    parts = tag.split(".")
    if len(parts) == 3 and all(p.isdigit() for p in parts):
        return f"{parts[0]}.{parts[1]}.{int(parts[2]) + 1}"
    return f"{tag}.1"


def _snapshot_of(mod: Mod) -> ModSnapshot:
    return ModSnapshot(
        id=mod.id,
        name=mod.name,
        version=mod.version,
        source=mod.source,
        project_id=mod.project_id,
        file_id=mod.file_id,
        filename=mod.filename,
        content_type=mod.content_type,
    )


def mod_info(
    session: Session, mod_ids: list[str], fallback: VersionSnapshot | None = None
) -> dict[str, ModSnapshot]:
    """Display records for ``mod_ids`` from the library, else from ``fallback``."""
    known = {m.id: m for m in fallback.mods} if fallback else {}
    info: dict[str, ModSnapshot] = {}
    library = (
        {m.id: m for m in session.exec(select(Mod).where(Mod.id.in_(mod_ids))).all()}
        if mod_ids
        else {}
    )
    for mod_id in mod_ids:
        if mod_id in library:
            info[mod_id] = _snapshot_of(library[mod_id])
        elif mod_id in known:
            info[mod_id] = known[mod_id]
    return info


def build_snapshot(
    session: Session, modpack: Modpack, previous: VersionSnapshot | None = None
) -> VersionSnapshot:
    state = get_modpack_state(modpack)
    info = mod_info(session, state.mod_ids, previous)
    mods = [info[m] for m in state.mod_ids if m in info]
    return VersionSnapshot(state=state, game_version=modpack.game_version, mods=mods)


def _append_version(
    session: Session,
    modpack: Modpack,
    snapshot: VersionSnapshot,
    changes: list[ModpackChange],
    message: str,
    tag: str,
    parent_id: str | None,
) -> ModpackVersion:
    existing = list_versions(session, modpack.id)
    taken = {v.version_id for v in existing}
    seq = max((v.seq for v in existing), default=0) + 1
    # Imported histories may already use the next number
    while f"v{seq}" in taken:
        seq += 1
    version_id = f"v{seq}"
    version = ModpackVersion(
        modpack_id=modpack.id,
        version_id=version_id,
        seq=seq,
        tag=tag,
        message=message,
        parent_id=parent_id,
        snapshot=snapshot.model_dump_json(),
        changes=json.dumps([c.model_dump(mode="json") for c in changes]),
        config_snapshot_id=overrides.create_config_snapshot(modpack.id, version_id),
    )
    session.add(version)
    modpack.current_version_id = version_id
    modpack.version = tag
    touch(modpack)
    session.add(modpack)
    return version


# --- Commit ---


def initialize_version_control(
    session: Session, modpack: Modpack, message: str = "Initial version"
) -> ModpackVersion:
    """Create ``v1`` from the live state; returns the current version if one exists."""
    existing = current_version(session, modpack)
    if existing:
        return existing
    snapshot = build_snapshot(session, modpack)
    changes = [
        ModpackChange(
            type=ChangeType.add,
            mod_id=m,
            mod_name=next((s.name for s in snapshot.mods if s.id == m), m),
            project_key=project_key_of(m),
            new_file_id=_file_id(m),
        )
        for m in snapshot.state.mod_ids
    ]
    version = _append_version(
        session, modpack, snapshot, changes, message, modpack.version or "1.0.0", None
    )
    session.commit()
    session.refresh(version)
    logger.info("Initialized version control for '%s'", modpack.name)
    return version


def _config_changed(modpack: Modpack, version: ModpackVersion | None) -> bool:
    live = overrides.live_hash(modpack.id)
    saved = overrides.snapshot_hash(modpack.id, version.config_snapshot_id) if version else None
    return live != saved


def create_version(
    session: Session,
    modpack: Modpack,
    message: str,
    tag: str | None = None,
    *,
    force: bool = False,
    has_config_changes: bool = False,
) -> ModpackVersion:
    """Commit the live state as a new version.

    Raises:
        EmptyCommitError: If nothing changed and ``force`` is not set.
    """
    current = current_version(session, modpack)
    if current is None:
        version = initialize_version_control(session, modpack, message)
        if tag:
            version.tag = tag
            modpack.version = tag
            session.add(version)
            session.add(modpack)
            session.commit()
        return version

    previous = load_snapshot(current)
    snapshot = build_snapshot(session, modpack, previous)
    changes = diff(
        previous.state,
        snapshot.state,
        {m.id: m for m in previous.mods},
        {m.id: m for m in snapshot.mods},
    )
    config_changed = has_config_changes or _config_changed(modpack, current)

    if not changes and not config_changed and not force:
        raise EmptyCommitError(modpack.id)
    if not changes and config_changed:
        changes.append(ModpackChange(type=ChangeType.config, mod_name="Configuration files"))
    elif not changes:
        changes.append(ModpackChange(type=ChangeType.marker, mod_name=message))

    version = _append_version(
        session,
        modpack,
        snapshot,
        changes,
        message,
        tag or next_tag(current.tag),
        current.version_id,
    )
    session.commit()
    session.refresh(version)
    logger.info(
        "Committed %s (%s) for '%s': %d changes",
        version.version_id,
        version.tag,
        modpack.name,
        len(changes),
    )
    return version


def compare_versions(
    session: Session, modpack: Modpack, from_id: str, to_id: str
) -> list[ModpackChange]:
    a = load_snapshot(get_version_or_raise(session, modpack.id, from_id))
    b = load_snapshot(get_version_or_raise(session, modpack.id, to_id))
    return diff(a.state, b.state, {m.id: m for m in a.mods}, {m.id: m for m in b.mods})


def get_unsaved_changes(session: Session, modpack: Modpack) -> UnsavedChanges:
    current = current_version(session, modpack)
    live = get_modpack_state(modpack)
    if current is None:
        changes = diff(ModpackState(), live, None, mod_info(session, live.mod_ids))
        return UnsavedChanges(has_changes=bool(live.mod_ids), changes=changes)
    saved = load_snapshot(current)
    changes = diff(
        saved.state,
        live,
        {m.id: m for m in saved.mods},
        mod_info(session, live.mod_ids, saved),
    )
    config_changed = _config_changed(modpack, current)
    return UnsavedChanges(
        has_changes=bool(changes) or config_changed,
        changes=changes,
        config_changed=config_changed,
    )


def revert_unsaved_changes(session: Session, modpack: Modpack) -> list[ModpackChange]:
    """Reset live membership and configs to the current version without a new entry."""
    current = current_version(session, modpack)
    if current is None:
        raise NotFoundError("Version", f"{modpack.id}/current")
    saved = load_snapshot(current)
    reverted = diff(get_modpack_state(modpack), saved.state)
    apply_state(session, modpack, saved.state)
    overrides.restore_config_snapshot(modpack.id, current.config_snapshot_id)
    session.commit()
    logger.info("Reverted %d unsaved changes in '%s'", len(reverted), modpack.name)
    return reverted


# --- Rollback ---


def _provenance(mod_id: str, snap: ModSnapshot | None) -> ModRef | None:
    if snap and snap.project_id and snap.file_id:
        return ModRef(ModSource(snap.source), snap.project_id, snap.file_id)
    return parse_mod_id(mod_id)


def _plan_rollback(
    session: Session, snapshot: VersionSnapshot
) -> tuple[list[str], list[tuple[str, ModRef, str]], list[RollbackFailure]]:
    """Split a version's members into kept, to re-acquire and unrestorable."""
    snaps = {m.id: m for m in snapshot.mods}
    kept: list[str] = []
    fetch: list[tuple[str, ModRef, str]] = []
    failed: list[RollbackFailure] = []
    for mod_id in snapshot.state.mod_ids:
        snap = snaps.get(mod_id)
        if session.get(Mod, mod_id):
            kept.append(mod_id)
            continue
        ref = _provenance(mod_id, snap)
        name = snap.name if snap else mod_id
        if ref is None:
            failed.append(
                RollbackFailure(mod_id=mod_id, mod_name=name, reason="No provenance available")
            )
        else:
            fetch.append((mod_id, ref, name))
    return kept, fetch, failed


def validate_rollback(session: Session, modpack: Modpack, version_id: str) -> RollbackPreview:
    """Report what a rollback to ``version_id`` would keep, fetch and lose."""
    version = get_version_or_raise(session, modpack.id, version_id)
    snapshot = load_snapshot(version)
    kept, fetch, failed = _plan_rollback(session, snapshot)

    restorable_projects = {project_key_of(m) for m in kept} | {r.project_key for _, r, _ in fetch}
    disabled = set(snapshot.state.disabled)
    broken: list[str] = []
    for mod_id in kept:
        if mod_id in disabled:
            continue
        mod = session.get(Mod, mod_id)
        if mod is None:
            continue
        prefix = mod.project_key.split("-", 1)[0]
        for dep in mod_dependencies(mod):
            if dep.type == "required" and f"{prefix}-{dep.project_id}" not in restorable_projects:
                broken.append(f"{mod.name} requires {prefix}-{dep.project_id}")

    return RollbackPreview(
        version_id=version_id,
        total_mods=len(snapshot.state.mod_ids),
        available=kept,
        to_reacquire=[m for m, _, _ in fetch],
        unrestorable=failed,
        broken_dependencies=broken,
        can_rollback=bool(kept or fetch) or not snapshot.state.mod_ids,
    )


async def rollback(
    session: Session,
    catalog: CatalogClient,
    modpack: Modpack,
    version_id: str,
    *,
    restore_configs: bool = True,
    on_progress: ProgressCallback = noop_progress,
) -> RollbackResult:
    """Restore the membership, loader and configs of ``version_id``.

    Best effort: mods still in the library are kept, mods with provenance are
    re-acquired one at a time, and the rest are reported as failures. Locked
    live members are preserved even when the target version differs.
    """
    target = get_version_or_raise(session, modpack.id, version_id)
    snapshot = load_snapshot(target)
    before = get_modpack_state(modpack)
    config_before = overrides.live_hash(modpack.id)

    kept, fetch, failed = _plan_rollback(session, snapshot)

    # old id -> id actually present in the library after re-acquisition
    restored: dict[str, str] = {}
    for i, (mod_id, ref, name) in enumerate(fetch, 1):
        on_progress("reacquiring", i, len(fetch), name)
        try:
            data = await fetch_catalog_mod(
                catalog,
                ref,
                loader=snapshot.state.loader,
                game_version=snapshot.game_version,
            )
            mod = add_mod(session, data)
            restored[mod_id] = mod.id
            logger.info("Rollback: re-acquired '%s'", mod.name)
        except (NotFoundError, ExternalServiceError) as e:
            logger.warning("Rollback: could not re-acquire %s: %s", mod_id, e)
            failed.append(RollbackFailure(mod_id=mod_id, mod_name=name, reason=str(e)))

    id_map = {m: m for m in kept} | restored
    state = ModpackState(
        mod_ids=sorted(id_map.values()),
        disabled=sorted(id_map[m] for m in snapshot.state.disabled if m in id_map),
        locked=sorted(id_map[m] for m in snapshot.state.locked if m in id_map),
        notes={id_map[m]: n for m, n in snapshot.state.notes.items() if m in id_map},
        loader=snapshot.state.loader or modpack.loader,
        loader_version=snapshot.state.loader_version or modpack.loader_version,
    )
    _keep_locked_members(before, state)

    apply_state(session, modpack, state)
    if snapshot.game_version:
        modpack.game_version = snapshot.game_version

    configs_restored = False
    if restore_configs:
        configs_restored = overrides.restore_config_snapshot(modpack.id, target.config_snapshot_id)
    config_changed = overrides.live_hash(modpack.id) != config_before

    changes = diff(before, state)
    new_version_id: str | None = None
    if changes or failed or config_changed:
        original = len(snapshot.state.mod_ids)
        restored_total = len(kept) + len(restored)
        if restored_total < original:
            message = f"Partial rollback to {target.tag} ({restored_total}/{original} mods)"
        else:
            message = f"Rollback to {target.tag}"
        version = create_version(
            session,
            modpack,
            message,
            f"{target.tag}-rollback",
            force=True,
            has_config_changes=config_changed,
        )
        new_version_id = version.version_id

    loader_restored = bool(snapshot.state.loader or snapshot.state.loader_version)
    instance = instance_service.get_instance_by_modpack(session, modpack.id)
    if instance:
        if loader_restored:
            instance.loader = modpack.loader
            instance.loader_version = modpack.loader_version
            instance.game_version = modpack.game_version
            session.add(instance)
        if configs_restored:
            _copied, errors = instance_service.push_configs(instance, modpack.id)
            for err in errors:
                logger.warning("Rollback: config sync to instance failed: %s", err)
    session.commit()

    logger.info(
        "Rolled back '%s' to %s: kept %d, restored %d, failed %d",
        modpack.name,
        version_id,
        len(kept),
        len(restored),
        len(failed),
    )
    return RollbackResult(
        success=True,
        version_id=version_id,
        new_version_id=new_version_id,
        kept_count=len(kept),
        restored_count=len(restored),
        failed_count=len(failed),
        failed_mods=failed,
        total_mods=len(state.mod_ids),
        original_mod_count=len(snapshot.state.mod_ids),
        loader_restored=loader_restored,
        configs_restored=configs_restored,
        changes=changes,
    )


def _keep_locked_members(before: ModpackState, state: ModpackState) -> None:
    """Carry live locked members into ``state``, displacing same-project targets."""
    for mod_id in before.locked:
        key = project_key_of(mod_id)
        if mod_id in state.mod_ids:
            if mod_id not in state.locked:
                state.locked = sorted({*state.locked, mod_id})
            continue
        displaced = [m for m in state.mod_ids if project_key_of(m) == key]
        state.mod_ids = sorted({*(m for m in state.mod_ids if m not in displaced), mod_id})
        state.disabled = [m for m in state.disabled if m not in displaced]
        state.locked = sorted({*(m for m in state.locked if m not in displaced), mod_id})
        for m in displaced:
            state.notes.pop(m, None)
        if mod_id in before.disabled:
            state.disabled = sorted({*state.disabled, mod_id})
        if mod_id in before.notes:
            state.notes[mod_id] = before.notes[mod_id]
        logger.info("Rollback: kept locked member %s", mod_id)


# --- History import ---


def import_version_history(
    session: Session, modpack: Modpack, history: ManifestVersionHistory
) -> int:
    """Append remote versions whose ids are unknown locally; returns how many."""
    existing = list_versions(session, modpack.id)
    local = {v.version_id for v in existing}
    seq = max((v.seq for v in existing), default=0)
    added = 0
    for remote in history.versions:
        if remote.id in local:
            continue
        seq += 1
        snapshot = VersionSnapshot(
            state=ModpackState(
                mod_ids=sorted(remote.mod_ids),
                disabled=sorted(remote.disabled_mod_ids),
                locked=sorted(remote.locked_mod_ids),
                notes=remote.notes,
                loader=remote.loader,
                loader_version=remote.loader_version,
            ),
            game_version=remote.game_version,
            mods=remote.mod_snapshots,
        )
        session.add(
            ModpackVersion(
                modpack_id=modpack.id,
                version_id=remote.id,
                seq=seq,
                tag=remote.tag,
                message=remote.message,
                parent_id=remote.parent_id,
                snapshot=snapshot.model_dump_json(),
                changes=json.dumps([c.model_dump(mode="json") for c in remote.changes]),
            )
        )
        local.add(remote.id)
        added += 1
    if history.current_version_id and history.current_version_id in local:
        modpack.current_version_id = history.current_version_id
        session.add(modpack)
    session.flush()
    logger.info("Imported %d versions into '%s'", added, modpack.name)
    return added
