"""Modpack aggregate: metadata, membership and per-member flags.

Membership lives in ``modpack_entries`` with one row per member, so the
disabled and locked sets can never reference a non-member. A modpack holds
at most one file per project; adding another file of a member's project
replaces it.
"""

from __future__ import annotations

import logging
import shutil
import uuid
from datetime import UTC, datetime
from pathlib import Path

from sqlmodel import Session, select

from modpack_manager.errors import LockedModError, NotFoundError
from modpack_manager.identity import project_key_of
from modpack_manager.models.instance import Instance
from modpack_manager.models.mod import Mod
from modpack_manager.models.modpack import Modpack, ModpackEntry
from modpack_manager.models.pending_import import PendingImport
from modpack_manager.schemas.instance import ConfigSyncMode
from modpack_manager.schemas.modpack import (
    DependencyIssue,
    DependencyReport,
    ModpackCreate,
    ModpackEntryOut,
    ModpackOut,
    ModpackState,
    ModpackUpdate,
)
from modpack_manager.services import overrides
from modpack_manager.services.library_service import get_mod_or_raise, mod_dependencies

logger = logging.getLogger(__name__)


def new_id() -> str:
    return uuid.uuid4().hex


def touch(modpack: Modpack) -> None:
    modpack.updated_at = datetime.now(UTC)


def get_modpack_or_raise(session: Session, modpack_id: str) -> Modpack:
    modpack = session.get(Modpack, modpack_id)
    if not modpack:
        raise NotFoundError("Modpack", modpack_id)
    return modpack


def list_modpacks(session: Session) -> list[Modpack]:
    return list(session.exec(select(Modpack).order_by(Modpack.name)).all())


def find_by_share_code(session: Session, share_code: str) -> Modpack | None:
    return session.exec(select(Modpack).where(Modpack.share_code == share_code)).first()


def create_modpack(session: Session, data: ModpackCreate, *, commit: bool = True) -> Modpack:
    modpack = Modpack(id=new_id(), **data.model_dump())
    session.add(modpack)
    if commit:
        session.commit()
        session.refresh(modpack)
    logger.info("Created modpack '%s' (%s)", modpack.name, modpack.id)
    return modpack


def update_modpack_metadata(session: Session, modpack: Modpack, data: ModpackUpdate) -> Modpack:
    for key, value in data.model_dump(exclude_unset=True).items():
        if value is not None:
            setattr(modpack, key, value)
    touch(modpack)
    session.add(modpack)
    session.commit()
    session.refresh(modpack)
    return modpack


def delete_modpack(session: Session, modpack: Modpack) -> None:
    """Delete a modpack with its history, pending import, overrides and instance."""
    instance = session.exec(select(Instance).where(Instance.modpack_id == modpack.id)).first()
    if instance:
        shutil.rmtree(Path(instance.path), ignore_errors=True)
        session.delete(instance)
    pending = session.get(PendingImport, modpack.id)
    if pending:
        session.delete(pending)
    overrides.delete_overrides(modpack.id)
    name = modpack.name
    session.delete(modpack)
    session.commit()
    logger.info("Deleted modpack '%s'", name)


def clone_modpack(session: Session, modpack: Modpack, name: str) -> Modpack:
    """Copy membership and flags into a new modpack with an empty history."""
    clone = Modpack(
        id=new_id(),
        name=name,
        version=modpack.version,
        description=modpack.description,
        game_version=modpack.game_version,
        loader=modpack.loader,
        loader_version=modpack.loader_version,
    )
    session.add(clone)
    for entry in modpack.entries:
        clone.entries.append(
            ModpackEntry(
                modpack_id=clone.id,
                mod_id=entry.mod_id,
                project_key=entry.project_key,
                disabled=entry.disabled,
                locked=entry.locked,
                note=entry.note,
            )
        )
    src = overrides.overrides_path(modpack.id)
    if src.is_dir():
        overrides.copy_tree(
            src,
            overrides.overrides_path(clone.id),
            overrides.OVERRIDE_FOLDERS,
            ConfigSyncMode.overwrite,
        )
    session.commit()
    session.refresh(clone)
    logger.info("Cloned modpack '%s' into '%s'", modpack.name, name)
    return clone


def modpack_to_out(session: Session, modpack: Modpack) -> ModpackOut:
    mod_ids = [e.mod_id for e in modpack.entries]
    library = (
        {m.id: m for m in session.exec(select(Mod).where(Mod.id.in_(mod_ids))).all()}
        if mod_ids
        else {}
    )
    mods: list[ModpackEntryOut] = []
    for entry in sorted(modpack.entries, key=lambda e: e.project_key):
        mod = library.get(entry.mod_id)
        mods.append(
            ModpackEntryOut(
                mod_id=entry.mod_id,
                project_key=entry.project_key,
                name=mod.name if mod else entry.mod_id,
                version=mod.version if mod else "",
                content_type=mod.content_type if mod else "mod",
                disabled=entry.disabled,
                locked=entry.locked,
                note=entry.note,
                in_library=mod is not None,
            )
        )
    return ModpackOut(
        id=modpack.id,
        name=modpack.name,
        version=modpack.version,
        description=modpack.description,
        game_version=modpack.game_version,
        loader=modpack.loader,
        loader_version=modpack.loader_version,
        share_code=modpack.share_code,
        current_version_id=modpack.current_version_id,
        remote_url=modpack.remote_url,
        remote_auto_check=modpack.remote_auto_check,
        remote_last_checked=modpack.remote_last_checked,
        publish_raw_url=modpack.publish_raw_url,
        created_at=modpack.created_at,
        updated_at=modpack.updated_at,
        mod_count=len(mods),
        mods=mods,
    )


# --- State ---


def get_modpack_state(modpack: Modpack) -> ModpackState:
    entries = modpack.entries
    return ModpackState(
        mod_ids=sorted(e.mod_id for e in entries),
        disabled=sorted(e.mod_id for e in entries if e.disabled),
        locked=sorted(e.mod_id for e in entries if e.locked),
        notes={e.mod_id: e.note for e in entries if e.note},
        loader=modpack.loader,
        loader_version=modpack.loader_version,
    )


def _drop_entry(session: Session, modpack: Modpack, entry: ModpackEntry) -> None:
    modpack.entries.remove(entry)
    session.delete(entry)


def apply_state(session: Session, modpack: Modpack, state: ModpackState) -> None:
    """Make the live membership equal to ``state``. Lock rules are the caller's concern."""
    wanted = set(state.mod_ids)
    disabled = set(state.disabled)
    locked = set(state.locked)
    by_id = {e.mod_id: e for e in modpack.entries}
    for mod_id, entry in by_id.items():
        if mod_id not in wanted:
            _drop_entry(session, modpack, entry)
    # Flush deletions first so a replacement row cannot hit the unique constraint
    session.flush()
    for mod_id in sorted(wanted):
        entry = by_id.get(mod_id)
        if entry is None:
            entry = ModpackEntry(
                modpack_id=modpack.id, mod_id=mod_id, project_key=project_key_of(mod_id)
            )
            modpack.entries.append(entry)
        entry.disabled = mod_id in disabled
        entry.locked = mod_id in locked
        entry.note = state.notes.get(mod_id)
        session.add(entry)
    modpack.loader = state.loader
    modpack.loader_version = state.loader_version
    touch(modpack)
    session.add(modpack)


# --- Membership ---


def get_entry(modpack: Modpack, mod_id: str) -> ModpackEntry | None:
    return next((e for e in modpack.entries if e.mod_id == mod_id), None)


def get_entry_or_raise(modpack: Modpack, mod_id: str) -> ModpackEntry:
    entry = get_entry(modpack, mod_id)
    if entry is None:
        raise NotFoundError("Modpack member", mod_id)
    return entry


def get_entry_for_project(modpack: Modpack, project_key: str) -> ModpackEntry | None:
    return next((e for e in modpack.entries if e.project_key == project_key), None)


def add_mod_to_modpack(
    session: Session,
    modpack: Modpack,
    mod_id: str,
    *,
    disabled: bool = False,
    commit: bool = True,
) -> ModpackEntry:
    """Add a library mod. A member of the same project is replaced, keeping its flags.

    Raises:
        NotFoundError: If the mod is not in the library.
        LockedModError: If the same-project member being replaced is locked.
    """
    mod = get_mod_or_raise(session, mod_id)
    existing = get_entry(modpack, mod_id)
    if existing:
        return existing

    previous = get_entry_for_project(modpack, mod.project_key)
    note: str | None = None
    if previous is not None:
        if previous.locked:
            raise LockedModError(previous.mod_id, "replace")
        disabled = previous.disabled
        note = previous.note
        _drop_entry(session, modpack, previous)
        session.flush()

    entry = ModpackEntry(
        modpack_id=modpack.id,
        mod_id=mod.id,
        project_key=mod.project_key,
        disabled=disabled,
        note=note,
    )
    modpack.entries.append(entry)
    touch(modpack)
    session.add(modpack)
    if commit:
        session.commit()
    logger.info("Added '%s' to modpack '%s'", mod.name, modpack.name)
    return entry


def remove_mod_from_modpack(
    session: Session, modpack: Modpack, mod_id: str, *, commit: bool = True
) -> None:
    entry = get_entry_or_raise(modpack, mod_id)
    if entry.locked:
        raise LockedModError(mod_id, "remove")
    _drop_entry(session, modpack, entry)
    touch(modpack)
    session.add(modpack)
    if commit:
        session.commit()
    logger.info("Removed %s from modpack '%s'", mod_id, modpack.name)


def replace_mod_in_modpack(
    session: Session,
    modpack: Modpack,
    old_mod_id: str,
    new_mod_id: str,
    *,
    commit: bool = True,
) -> ModpackEntry:
    """Swap one member for another library mod, carrying disabled state and note."""
    old = get_entry_or_raise(modpack, old_mod_id)
    if old.locked:
        raise LockedModError(old_mod_id, "replace")
    new_mod = get_mod_or_raise(session, new_mod_id)
    disabled, note = old.disabled, old.note
    _drop_entry(session, modpack, old)
    session.flush()

    entry = get_entry(modpack, new_mod_id)
    if entry is None:
        entry = ModpackEntry(
            modpack_id=modpack.id,
            mod_id=new_mod.id,
            project_key=new_mod.project_key,
        )
        modpack.entries.append(entry)
    entry.disabled = disabled
    entry.note = note
    session.add(entry)
    touch(modpack)
    session.add(modpack)
    if commit:
        session.commit()
    logger.info("Replaced %s with %s in '%s'", old_mod_id, new_mod_id, modpack.name)
    return entry


def set_mod_enabled(
    session: Session, modpack: Modpack, mod_id: str, enabled: bool, *, commit: bool = True
) -> ModpackEntry:
    entry = get_entry_or_raise(modpack, mod_id)
    if entry.disabled == (not enabled):
        return entry
    if entry.locked:
        raise LockedModError(mod_id, "enable" if enabled else "disable")
    entry.disabled = not enabled
    session.add(entry)
    touch(modpack)
    session.add(modpack)
    if commit:
        session.commit()
    return entry


def toggle_mod(session: Session, modpack: Modpack, mod_id: str) -> ModpackEntry:
    entry = get_entry_or_raise(modpack, mod_id)
    return set_mod_enabled(session, modpack, mod_id, entry.disabled)


def set_mod_locked(
    session: Session, modpack: Modpack, mod_id: str, locked: bool, *, commit: bool = True
) -> ModpackEntry:
    entry = get_entry_or_raise(modpack, mod_id)
    entry.locked = locked
    session.add(entry)
    touch(modpack)
    session.add(modpack)
    if commit:
        session.commit()
    return entry


def set_mod_note(
    session: Session, modpack: Modpack, mod_id: str, note: str | None, *, commit: bool = True
) -> ModpackEntry:
    entry = get_entry_or_raise(modpack, mod_id)
    entry.note = note or None
    session.add(entry)
    touch(modpack)
    session.add(modpack)
    if commit:
        session.commit()
    return entry


def check_dependencies(session: Session, modpack: Modpack) -> DependencyReport:
    """Advisory check of required dependencies and incompatibilities among enabled members."""
    enabled = [e for e in modpack.entries if not e.disabled]
    enabled_projects = {e.project_key for e in enabled}
    issues: list[DependencyIssue] = []
    for entry in enabled:
        mod = session.get(Mod, entry.mod_id)
        if not mod:
            continue
        prefix = mod.project_key.split("-", 1)[0]
        for dep in mod_dependencies(mod):
            dep_key = f"{prefix}-{dep.project_id}"
            if dep.type == "required" and dep_key not in enabled_projects:
                issues.append(
                    DependencyIssue(
                        mod_id=mod.id,
                        mod_name=mod.name,
                        dependency_project_key=dep_key,
                        kind="missing",
                    )
                )
            elif dep.type == "incompatible" and dep_key in enabled_projects:
                issues.append(
                    DependencyIssue(
                        mod_id=mod.id,
                        mod_name=mod.name,
                        dependency_project_key=dep_key,
                        kind="incompatible",
                    )
                )
    return DependencyReport(ok=not issues, issues=issues)
