"""Subscription of a modpack to a manifest published at a URL.

The cheap path compares the fetched manifest checksum with the one recorded
on the last sync. Only when they differ is the full project-level diff run.
Updates are applied through :func:`import_service.import_manifest`, so
conflicts follow the usual attempt, pause and resolve protocol.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import Any

import httpx
from sqlmodel import Session

from modpack_manager.catalog.base import CatalogClient
from modpack_manager.config import settings
from modpack_manager.errors import ExternalServiceError, ManifestValidationError
from modpack_manager.models.modpack import Modpack
from modpack_manager.publish.gist import strip_gist_revision
from modpack_manager.schemas.imports import (
    ImportConflictOutcome,
    ImportOk,
    ImportOutcome,
    IncomingModpack,
)
from modpack_manager.schemas.modpack import ModpackState
from modpack_manager.schemas.remote import RemoteSourceSet, RemoteUpdateCheck
from modpack_manager.schemas.version import ChangeType, ModSnapshot
from modpack_manager.services.import_service import import_manifest
from modpack_manager.services.manifest_service import native_to_incoming, parse_native_manifest
from modpack_manager.services.modpack_service import get_modpack_state, touch
from modpack_manager.services.progress import ProgressCallback, noop_progress
from modpack_manager.services.version_service import (
    create_version,
    diff,
    import_version_history,
    list_versions,
    mod_info,
)

logger = logging.getLogger(__name__)

ManifestFetcher = Callable[[str], Awaitable[dict[str, Any]]]


def normalize_remote_url(url: str) -> str:
    url = url.strip()
    if not url.startswith(("http://", "https://")):
        raise ManifestValidationError(f"Not an http(s) URL: {url}")
    return strip_gist_revision(url)


async def fetch_remote_manifest(
    url: str,
    *,
    client: httpx.AsyncClient | None = None,
    timeout: float | None = None,
) -> dict[str, Any]:
    """GET ``url`` and return the decoded manifest object.

    Raises:
        ExternalServiceError: On transport failure or an HTTP error status.
        ManifestValidationError: If the body is not a JSON object.
    """
    url = normalize_remote_url(url)
    headers = {"Accept": "application/json", "Cache-Control": "no-cache"}
    try:
        if client is None:
            async with httpx.AsyncClient(
                follow_redirects=True, timeout=timeout or settings.remote_fetch_timeout
            ) as own:
                resp = await own.get(url, headers=headers)
        else:
            resp = await client.get(url, headers=headers)
        resp.raise_for_status()
    except httpx.HTTPStatusError as e:
        code = e.response.status_code
        raise ExternalServiceError(
            f"Remote manifest returned HTTP {code}", status_code=code, retryable=code >= 500
        ) from e
    except httpx.TransportError as e:
        raise ExternalServiceError(f"Could not reach {url}: {e}", retryable=True) from e

    text = resp.text.lstrip()
    if text.startswith("<"):
        raise ManifestValidationError("Remote URL returned HTML instead of a manifest")
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise ManifestValidationError(f"Remote manifest is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise ManifestValidationError("Remote manifest must be a JSON object")
    return data


def _remote_state(incoming: IncomingModpack) -> tuple[ModpackState, dict[str, ModSnapshot]]:
    mods = {
        m.mod_id: ModSnapshot(
            id=m.mod_id,
            name=m.name or m.mod_id,
            version=m.version,
            source=str(m.source),
            project_id=m.project_id,
            file_id=m.file_id,
            filename=m.filename,
            content_type=str(m.content_type),
        )
        for m in incoming.mods
    }
    state = ModpackState(
        mod_ids=sorted(mods),
        disabled=sorted(m.mod_id for m in incoming.mods if m.disabled),
        locked=sorted(m.mod_id for m in incoming.mods if m.locked),
        notes={m.mod_id: m.note for m in incoming.mods if m.note},
        loader=incoming.loader,
        loader_version=incoming.loader_version,
    )
    return state, mods


async def check_for_update(
    session: Session,
    modpack: Modpack,
    *,
    fetch: ManifestFetcher = fetch_remote_manifest,
) -> RemoteUpdateCheck:
    """Compare the modpack with its remote source without changing membership."""
    if not modpack.remote_url:
        raise ValueError(f"Modpack '{modpack.name}' has no remote source")

    manifest = parse_native_manifest(await fetch(modpack.remote_url))
    now = datetime.now(UTC)
    modpack.remote_last_checked = now
    session.add(modpack)

    if manifest.checksum and manifest.checksum == modpack.remote_last_checksum:
        session.commit()
        logger.info("Remote for '%s' unchanged (%s)", modpack.name, manifest.checksum)
        return RemoteUpdateCheck(
            has_update=False,
            checksum=manifest.checksum,
            remote_version=manifest.modpack.version,
            checked_at=now,
        )

    incoming = native_to_incoming(manifest)
    remote_state, remote_mods = _remote_state(incoming)
    local_state = get_modpack_state(modpack)
    local_mods = mod_info(session, local_state.mod_ids)
    # Loader differences are reported through the flags below
    changes = [
        c
        for c in diff(local_state, remote_state, local_mods, remote_mods)
        if c.type != ChangeType.loader_change
    ]

    loader_changed = bool(incoming.loader) and incoming.loader != modpack.loader
    loader_version_changed = bool(incoming.loader_version) and (
        incoming.loader_version != modpack.loader_version
    )
    game_version_changed = bool(incoming.game_version) and (
        incoming.game_version != modpack.game_version
    )
    history_changed = False
    if incoming.version_history:
        local_ids = {v.version_id for v in list_versions(session, modpack.id)}
        history_changed = any(v.id not in local_ids for v in incoming.version_history.versions)

    has_update = bool(
        changes or loader_changed or loader_version_changed or game_version_changed or history_changed
    )
    if not has_update:
        modpack.remote_last_checksum = manifest.checksum
        session.add(modpack)
    session.commit()
    logger.info(
        "Remote check for '%s': %d changes, update=%s", modpack.name, len(changes), has_update
    )
    return RemoteUpdateCheck(
        has_update=has_update,
        checksum=manifest.checksum,
        remote_version=manifest.modpack.version,
        full_diff=True,
        changes=changes,
        loader_changed=loader_changed,
        loader_version_changed=loader_version_changed,
        game_version_changed=game_version_changed,
        has_version_history_changes=history_changed,
        checked_at=now,
    )


async def apply_remote_update(
    session: Session,
    catalog: CatalogClient,
    modpack: Modpack,
    *,
    fetch: ManifestFetcher = fetch_remote_manifest,
    on_progress: ProgressCallback = noop_progress,
) -> ImportOutcome:
    """Make the modpack match its remote source.

    Locked local members are kept. On success the remote checksum is recorded
    and a version is committed even when the membership did not change.
    """
    if not modpack.remote_url:
        raise ValueError(f"Modpack '{modpack.name}' has no remote source")

    manifest = parse_native_manifest(await fetch(modpack.remote_url))
    incoming = native_to_incoming(manifest)
    outcome = await import_manifest(
        session,
        catalog,
        incoming,
        target_modpack_id=modpack.id,
        initialize_history=False,
        on_progress=on_progress,
    )
    if not isinstance(outcome, ImportOk):
        return outcome

    session.refresh(modpack)
    if incoming.version_history:
        import_version_history(session, modpack, incoming.version_history)
    if not modpack.share_code:
        modpack.share_code = manifest.share_code
    modpack.remote_last_checksum = manifest.checksum
    modpack.remote_last_checked = datetime.now(UTC)
    touch(modpack)
    session.add(modpack)
    session.commit()
    create_version(session, modpack, "Synced with remote", force=True)
    logger.info("Applied remote update to '%s' (%s)", modpack.name, manifest.checksum)
    return outcome


async def import_from_url(
    session: Session,
    catalog: CatalogClient,
    url: str,
    *,
    fetch: ManifestFetcher = fetch_remote_manifest,
    on_progress: ProgressCallback = noop_progress,
) -> ImportOutcome:
    """Import a published manifest and subscribe the resulting modpack to it."""
    url = normalize_remote_url(url)
    manifest = parse_native_manifest(await fetch(url))
    outcome = await import_manifest(
        session, catalog, native_to_incoming(manifest), on_progress=on_progress
    )
    if isinstance(outcome, ImportOk | ImportConflictOutcome):
        modpack = session.get(Modpack, outcome.modpack_id)
        if modpack is not None:
            modpack.remote_url = url
            if isinstance(outcome, ImportOk):
                modpack.remote_last_checksum = manifest.checksum
            modpack.remote_last_checked = datetime.now(UTC)
            session.add(modpack)
            session.commit()
    return outcome


def set_remote_source(session: Session, modpack: Modpack, data: RemoteSourceSet) -> Modpack:
    url = normalize_remote_url(data.url)
    if url != modpack.remote_url:
        modpack.remote_last_checksum = None
        modpack.remote_last_checked = None
    modpack.remote_url = url
    modpack.remote_auto_check = data.auto_check
    touch(modpack)
    session.add(modpack)
    session.commit()
    session.refresh(modpack)
    logger.info("Remote source for '%s' set to %s", modpack.name, url)
    return modpack


def clear_remote_source(session: Session, modpack: Modpack) -> Modpack:
    modpack.remote_url = None
    modpack.remote_auto_check = False
    modpack.remote_last_checked = None
    modpack.remote_last_checksum = None
    touch(modpack)
    session.add(modpack)
    session.commit()
    session.refresh(modpack)
    return modpack
