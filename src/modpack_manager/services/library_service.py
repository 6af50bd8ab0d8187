"""Local mod library: immutable catalog files addressed by provenance id.

Mods are never edited in place. A new file of a project is a new row; the
old row stays until deleted so version history can still name it.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re

from sqlmodel import Session, select

from modpack_manager.catalog.base import CatalogClient
from modpack_manager.constants import (
    CF_CLASS_IDS,
    CF_DEPENDENCY_TYPES,
    CF_RELEASE_TYPES,
    KNOWN_LOADERS,
    ContentType,
)
from modpack_manager.errors import NotFoundError
from modpack_manager.identity import ModRef, ModSource, make_mod_id, project_key_for
from modpack_manager.models.mod import Mod
from modpack_manager.schemas.catalog import CatalogFile, CatalogMod
from modpack_manager.schemas.mod import (
    LibraryUpdateReport,
    ModCreate,
    ModDependency,
    ModOut,
    ModUpdateInfo,
)
from modpack_manager.services.progress import ProgressCallback, noop_progress

logger = logging.getLogger(__name__)

_GAME_VERSION_RE = re.compile(r"^1\.\d+(\.\d+)?$")
_CLASS_TO_CONTENT = {v: k for k, v in CF_CLASS_IDS.items()}


def _version_key(v: str) -> tuple[int, ...]:
    return tuple(int(p) for p in v.split("."))


def mod_to_out(mod: Mod) -> ModOut:
    return ModOut(
        id=mod.id,
        project_key=mod.project_key,
        created_at=mod.created_at,
        source=mod.source,
        project_id=mod.project_id,
        file_id=mod.file_id,
        name=mod.name,
        slug=mod.slug,
        version=mod.version,
        game_version=mod.game_version,
        loader=mod.loader,
        content_type=mod.content_type,
        filename=mod.filename,
        file_size=mod.file_size,
        download_url=mod.download_url,
        release_type=mod.release_type,
        description=mod.description,
        dependencies=mod_dependencies(mod),
    )


def mod_dependencies(mod: Mod) -> list[ModDependency]:
    return [ModDependency(**d) for d in json.loads(mod.dependencies or "[]")]


def add_mod(session: Session, data: ModCreate, *, commit: bool = True) -> Mod:
    """Insert a library mod; an existing row with the same id is returned as-is."""
    mod_id = make_mod_id(data.source, data.project_id, data.file_id)
    existing = session.get(Mod, mod_id)
    if existing:
        return existing

    mod = Mod(
        id=mod_id,
        source=data.source,
        project_id=data.project_id,
        file_id=data.file_id,
        project_key=project_key_for(data.source, data.project_id),
        name=data.name,
        slug=data.slug,
        version=data.version,
        game_version=data.game_version,
        loader=data.loader,
        content_type=data.content_type,
        filename=data.filename,
        file_size=data.file_size,
        download_url=data.download_url,
        release_type=data.release_type,
        description=data.description,
        dependencies=json.dumps([d.model_dump() for d in data.dependencies]),
    )
    session.add(mod)
    if commit:
        session.commit()
        session.refresh(mod)
    logger.info("Added '%s' (%s) to library", mod.name, mod.id)
    return mod


def get_mod(session: Session, mod_id: str) -> Mod | None:
    return session.get(Mod, mod_id)


def get_mod_or_raise(session: Session, mod_id: str) -> Mod:
    mod = session.get(Mod, mod_id)
    if not mod:
        raise NotFoundError("Mod", mod_id)
    return mod


def list_mods(session: Session, content_type: ContentType | None = None) -> list[Mod]:
    stmt = select(Mod)
    if content_type is not None:
        stmt = stmt.where(Mod.content_type == content_type)
    return list(session.exec(stmt.order_by(Mod.name)).all())


def find_by_project(session: Session, project_key: str) -> list[Mod]:
    """All library files of one project, newest first."""
    mods = session.exec(select(Mod).where(Mod.project_key == project_key)).all()
    return sorted(mods, key=lambda m: m.created_at, reverse=True)


def delete_mod(session: Session, mod_id: str) -> None:
    """Remove a mod from the library. Modpack membership is left untouched."""
    mod = get_mod_or_raise(session, mod_id)
    session.delete(mod)
    session.commit()
    logger.info("Deleted '%s' (%s) from library", mod.name, mod_id)


def mod_from_catalog(
    cmod: CatalogMod,
    cfile: CatalogFile,
    *,
    preferred_loader: str = "",
    target_game_version: str = "",
) -> ModCreate:
    """Convert a catalog project + file into library fields.

    The version label is the file's display name. Game version and loader are
    read from the file's version tags, preferring the requested target.
    """
    versions = [g for g in cfile.game_versions if _GAME_VERSION_RE.match(g)]
    loaders = [g.lower() for g in cfile.game_versions if g.lower() in KNOWN_LOADERS]

    if target_game_version and target_game_version in versions:
        game_version = target_game_version
    elif versions:
        game_version = max(versions, key=_version_key)
    else:
        game_version = "unknown"

    preferred = preferred_loader.lower()
    if preferred and preferred in loaders:
        loader = preferred
    elif loaders:
        loader = loaders[0]
    else:
        loader = preferred or "unknown"

    return ModCreate(
        source=ModSource.curseforge,
        project_id=str(cmod.id),
        file_id=str(cfile.id),
        name=cmod.name,
        slug=cmod.slug,
        version=cfile.display_name or cfile.file_name,
        game_version=game_version,
        loader=loader,
        content_type=_CLASS_TO_CONTENT.get(cmod.class_id or 0, ContentType.mod),
        filename=cfile.file_name,
        file_size=cfile.file_length,
        download_url=cfile.download_url,
        release_type=CF_RELEASE_TYPES.get(cfile.release_type, "release"),
        description=cmod.summary,
        dependencies=[
            ModDependency(
                project_id=str(d.project_id),
                type=CF_DEPENDENCY_TYPES.get(d.relation_type, "unknown"),
            )
            for d in cfile.dependencies
        ],
    )


async def fetch_catalog_mod(
    catalog: CatalogClient,
    ref: ModRef,
    *,
    loader: str = "",
    game_version: str = "",
) -> ModCreate:
    """Resolve provenance into library fields via the catalog.

    Raises:
        NotFoundError: If the project or file no longer exists in the catalog.
        ExternalServiceError: If the catalog call fails.
    """
    if ref.source != ModSource.curseforge:
        raise NotFoundError("Catalog source", str(ref.source))
    project_id, file_id = int(ref.project_id), int(ref.file_id)
    cmod = await catalog.get_mod(project_id)
    if not cmod:
        raise NotFoundError("Catalog project", ref.project_id)
    cfile = await catalog.get_file(project_id, file_id)
    if not cfile:
        raise NotFoundError("Catalog file", f"{ref.project_id}/{ref.file_id}")
    return mod_from_catalog(
        cmod, cfile, preferred_loader=loader, target_game_version=game_version
    )


async def check_library_updates(
    session: Session,
    catalog: CatalogClient,
    *,
    game_version: str = "",
    loader: str = "",
    batch_size: int = 10,
    on_progress: ProgressCallback = noop_progress,
) -> LibraryUpdateReport:
    """Ask the catalog for the best file of every library project.

    Requests run ``batch_size`` at a time; progress is reported once per
    completed batch. A failing project is recorded and the rest continue.
    """
    mods = [m for m in list_mods(session) if m.source == ModSource.curseforge]
    # One check per project, against its most recent library file
    latest: dict[str, Mod] = {}
    for mod in mods:
        cur = latest.get(mod.project_key)
        if cur is None or int(mod.file_id) > int(cur.file_id):
            latest[mod.project_key] = mod
    targets = list(latest.values())

    async def _check(mod: Mod) -> ModUpdateInfo:
        best = await catalog.get_best_file(
            int(mod.project_id),
            game_version or mod.game_version,
            loader or mod.loader,
            mod.content_type,
        )
        info = ModUpdateInfo(mod_id=mod.id, name=mod.name, current_file_id=mod.file_id)
        if best is not None:
            info.latest_file_id = str(best.id)
            info.latest_version = best.display_name or best.file_name
            info.has_update = best.id > int(mod.file_id)
        return info

    report = LibraryUpdateReport(checked=0)
    total = len(targets)
    for start in range(0, total, batch_size):
        batch = targets[start : start + batch_size]
        results = await asyncio.gather(*(_check(m) for m in batch), return_exceptions=True)
        for mod, result in zip(batch, results, strict=True):
            if isinstance(result, BaseException):
                logger.warning("Update check failed for %s: %s", mod.id, result)
                report.errors.append(f"{mod.name}: {result}")
                continue
            if result.has_update:
                report.updates.append(result)
        report.checked += len(batch)
        on_progress("checking_updates", report.checked, total, "")

    logger.info("Checked %d projects, %d updates available", total, len(report.updates))
    return report
