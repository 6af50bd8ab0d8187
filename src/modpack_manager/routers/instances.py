"""Endpoints for instances and modpack-to-instance sync."""

from fastapi import APIRouter, Depends, HTTPException
from sqlmodel import Session

from modpack_manager.catalog.base import CatalogClient
from modpack_manager.config import settings
from modpack_manager.database import get_session
from modpack_manager.errors import ModpackManagerError
from modpack_manager.models.instance import Instance
from modpack_manager.routers.deps import (
    get_catalog,
    get_locks,
    get_modpack_or_404,
    http_error,
    locked_modpack,
)
from modpack_manager.schemas.instance import (
    ConfigPullResult,
    ConfigSyncMode,
    InstanceCreate,
    InstanceOut,
    InstanceUpdate,
    SyncRequest,
    SyncResult,
    SyncStatus,
)
from modpack_manager.services.instance_service import (
    create_instance,
    delete_instance,
    get_instance_or_raise,
    instance_to_out,
    list_instances,
    sync_configs_to_modpack,
    update_instance,
)
from modpack_manager.services.locks import ModpackLocks
from modpack_manager.services.sync_service import check_sync_status, sync_modpack_to_instance

router = APIRouter(prefix="/instances", tags=["instances"])


def _get_instance(instance_id: str, session: Session) -> Instance:
    try:
        return get_instance_or_raise(session, instance_id)
    except ModpackManagerError as exc:
        raise http_error(exc) from exc


def _linked_modpack_id(instance: Instance) -> str:
    if not instance.modpack_id:
        raise HTTPException(400, "Instance is not linked to a modpack")
    return instance.modpack_id


@router.get("/", response_model=list[InstanceOut])
async def list_all(session: Session = Depends(get_session)) -> list[InstanceOut]:
    return [instance_to_out(i) for i in list_instances(session)]


@router.post("/", response_model=InstanceOut, status_code=201)
async def create(data: InstanceCreate, session: Session = Depends(get_session)) -> InstanceOut:
    try:
        return instance_to_out(create_instance(session, data))
    except ModpackManagerError as exc:
        raise http_error(exc) from exc


@router.get("/{instance_id}", response_model=InstanceOut)
async def get(instance_id: str, session: Session = Depends(get_session)) -> InstanceOut:
    return instance_to_out(_get_instance(instance_id, session))


@router.patch("/{instance_id}", response_model=InstanceOut)
async def patch(
    instance_id: str, data: InstanceUpdate, session: Session = Depends(get_session)
) -> InstanceOut:
    instance = _get_instance(instance_id, session)
    return instance_to_out(update_instance(session, instance, data))


@router.delete("/{instance_id}", status_code=204)
async def delete(
    instance_id: str, delete_files: bool = True, session: Session = Depends(get_session)
) -> None:
    delete_instance(session, _get_instance(instance_id, session), delete_files=delete_files)


@router.get("/{instance_id}/status", response_model=SyncStatus)
async def status(
    instance_id: str,
    config_sync_mode: ConfigSyncMode | None = None,
    session: Session = Depends(get_session),
) -> SyncStatus:
    instance = _get_instance(instance_id, session)
    modpack = get_modpack_or_404(_linked_modpack_id(instance), session)
    mode = config_sync_mode or ConfigSyncMode(settings.default_config_sync_mode)
    return check_sync_status(session, instance, modpack, config_sync_mode=mode)


@router.post("/{instance_id}/sync", response_model=SyncResult)
async def sync(
    instance_id: str,
    data: SyncRequest | None = None,
    session: Session = Depends(get_session),
    catalog: CatalogClient = Depends(get_catalog),
    locks: ModpackLocks = Depends(get_locks),
) -> SyncResult:
    """Bring the instance in line with its modpack; per-file failures are reported."""
    instance = _get_instance(instance_id, session)
    modpack_id = _linked_modpack_id(instance)
    request = data or SyncRequest()
    async with locked_modpack(modpack_id, session, locks) as modpack:
        session.refresh(instance)
        return await sync_modpack_to_instance(
            session,
            catalog,
            instance,
            modpack,
            config_sync_mode=request.config_sync_mode,
            clear_existing=request.clear_existing,
            batch_size=settings.download_batch_size,
        )


@router.post("/{instance_id}/pull-configs", response_model=ConfigPullResult)
async def pull_configs(
    instance_id: str,
    session: Session = Depends(get_session),
    locks: ModpackLocks = Depends(get_locks),
) -> ConfigPullResult:
    """Copy config edits made in the game back into the modpack."""
    instance = _get_instance(instance_id, session)
    modpack_id = _linked_modpack_id(instance)
    async with locks.hold(modpack_id):
        return sync_configs_to_modpack(instance, modpack_id)
