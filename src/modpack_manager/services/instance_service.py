"""Materialized game installations, at most one per modpack."""

from __future__ import annotations

import logging
import shutil
import uuid
from pathlib import Path

from sqlmodel import Session, select

from modpack_manager.config import settings
from modpack_manager.constants import CONFIG_FOLDERS, INSTANCE_FOLDERS
from modpack_manager.errors import AlreadyExistsError, NotFoundError
from modpack_manager.models.instance import Instance
from modpack_manager.models.modpack import Modpack
from modpack_manager.schemas.instance import (
    ConfigPullResult,
    ConfigSyncMode,
    InstanceCreate,
    InstanceOut,
    InstanceUpdate,
)
from modpack_manager.services import overrides

logger = logging.getLogger(__name__)


def instance_to_out(instance: Instance) -> InstanceOut:
    return InstanceOut.model_validate(instance, from_attributes=True)


def get_instance_or_raise(session: Session, instance_id: str) -> Instance:
    instance = session.get(Instance, instance_id)
    if not instance:
        raise NotFoundError("Instance", instance_id)
    return instance


def get_instance_by_modpack(session: Session, modpack_id: str) -> Instance | None:
    return session.exec(select(Instance).where(Instance.modpack_id == modpack_id)).first()


def list_instances(session: Session) -> list[Instance]:
    return list(session.exec(select(Instance).order_by(Instance.name)).all())


def create_instance(session: Session, data: InstanceCreate) -> Instance:
    """Create the instance record and its folder layout.

    Raises:
        NotFoundError: If ``modpack_id`` names an unknown modpack.
        AlreadyExistsError: If the modpack already has an instance.
    """
    modpack: Modpack | None = None
    if data.modpack_id:
        modpack = session.get(Modpack, data.modpack_id)
        if not modpack:
            raise NotFoundError("Modpack", data.modpack_id)
        if get_instance_by_modpack(session, modpack.id):
            raise AlreadyExistsError(f"Modpack '{modpack.name}' already has an instance")

    instance_id = uuid.uuid4().hex
    root = Path(data.path) if data.path else settings.instances_dir / instance_id
    for folder in INSTANCE_FOLDERS:
        (root / folder).mkdir(parents=True, exist_ok=True)

    instance = Instance(
        id=instance_id,
        name=data.name,
        modpack_id=modpack.id if modpack else None,
        path=str(root),
        game_version=modpack.game_version if modpack else "",
        loader=modpack.loader if modpack else "",
        loader_version=modpack.loader_version if modpack else "",
        memory_min_mb=data.memory_min_mb,
        memory_max_mb=data.memory_max_mb,
    )
    session.add(instance)
    session.commit()
    session.refresh(instance)
    logger.info("Created instance '%s' at %s", instance.name, root)
    return instance


def update_instance(
    session: Session, instance: Instance, data: InstanceUpdate, *, commit: bool = True
) -> Instance:
    for key, value in data.model_dump(exclude_unset=True).items():
        if value is not None:
            setattr(instance, key, value)
    session.add(instance)
    if commit:
        session.commit()
        session.refresh(instance)
    return instance


def delete_instance(session: Session, instance: Instance, *, delete_files: bool = True) -> None:
    """Delete an instance. Its modpack is never touched."""
    if delete_files:
        shutil.rmtree(Path(instance.path), ignore_errors=True)
    session.delete(instance)
    session.commit()
    logger.info("Deleted instance '%s'", instance.name)


def push_configs(instance: Instance, modpack_id: str) -> tuple[int, list[str]]:
    """Overwrite the instance's config folders with the modpack's overrides."""
    copied, _skipped, errors = overrides.copy_tree(
        overrides.overrides_path(modpack_id),
        Path(instance.path),
        CONFIG_FOLDERS,
        ConfigSyncMode.overwrite,
    )
    return copied, errors


def sync_configs_to_modpack(instance: Instance, modpack_id: str) -> ConfigPullResult:
    """Copy config edits made in the instance back into the modpack's overrides."""
    copied, _skipped, errors = overrides.copy_tree(
        Path(instance.path),
        overrides.overrides_path(modpack_id),
        CONFIG_FOLDERS,
        ConfigSyncMode.overwrite,
    )
    logger.info("Pulled %d config files from instance '%s'", copied, instance.name)
    return ConfigPullResult(files_copied=copied, errors=errors)
