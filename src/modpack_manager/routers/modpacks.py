"""Endpoints for modpack CRUD and membership edits."""

from fastapi import APIRouter, Depends
from sqlmodel import Session

from modpack_manager.database import get_session
from modpack_manager.errors import ModpackManagerError
from modpack_manager.routers.deps import get_locks, get_modpack_or_404, http_error, locked_modpack
from modpack_manager.schemas.modpack import (
    CloneRequest,
    DependencyReport,
    MemberAdd,
    MemberFlags,
    MemberReplace,
    ModpackCreate,
    ModpackOut,
    ModpackUpdate,
)
from modpack_manager.services.locks import ModpackLocks
from modpack_manager.services.modpack_service import (
    add_mod_to_modpack,
    check_dependencies,
    clone_modpack,
    create_modpack,
    delete_modpack,
    list_modpacks,
    modpack_to_out,
    remove_mod_from_modpack,
    replace_mod_in_modpack,
    set_mod_enabled,
    set_mod_locked,
    set_mod_note,
    toggle_mod,
    update_modpack_metadata,
)

router = APIRouter(prefix="/modpacks", tags=["modpacks"])


@router.get("/", response_model=list[ModpackOut])
async def list_all_modpacks(session: Session = Depends(get_session)) -> list[ModpackOut]:
    return [modpack_to_out(session, m) for m in list_modpacks(session)]


@router.post("/", response_model=ModpackOut, status_code=201)
async def create_new_modpack(
    data: ModpackCreate, session: Session = Depends(get_session)
) -> ModpackOut:
    return modpack_to_out(session, create_modpack(session, data))


@router.get("/{modpack_id}", response_model=ModpackOut)
async def get_modpack(modpack_id: str, session: Session = Depends(get_session)) -> ModpackOut:
    return modpack_to_out(session, get_modpack_or_404(modpack_id, session))


@router.patch("/{modpack_id}", response_model=ModpackOut)
async def patch_modpack(
    modpack_id: str,
    data: ModpackUpdate,
    session: Session = Depends(get_session),
    locks: ModpackLocks = Depends(get_locks),
) -> ModpackOut:
    async with locked_modpack(modpack_id, session, locks) as modpack:
        return modpack_to_out(session, update_modpack_metadata(session, modpack, data))


@router.delete("/{modpack_id}", status_code=204)
async def remove_modpack(
    modpack_id: str,
    session: Session = Depends(get_session),
    locks: ModpackLocks = Depends(get_locks),
) -> None:
    """Delete a modpack together with its history, overrides and instance."""
    async with locked_modpack(modpack_id, session, locks) as modpack:
        delete_modpack(session, modpack)
    locks.discard(modpack_id)


@router.post("/{modpack_id}/clone", response_model=ModpackOut, status_code=201)
async def clone(
    modpack_id: str, data: CloneRequest, session: Session = Depends(get_session)
) -> ModpackOut:
    modpack = get_modpack_or_404(modpack_id, session)
    return modpack_to_out(session, clone_modpack(session, modpack, data.name))


@router.get("/{modpack_id}/dependencies", response_model=DependencyReport)
async def dependencies(modpack_id: str, session: Session = Depends(get_session)) -> DependencyReport:
    return check_dependencies(session, get_modpack_or_404(modpack_id, session))


@router.post("/{modpack_id}/mods", response_model=ModpackOut, status_code=201)
async def add_member(
    modpack_id: str,
    data: MemberAdd,
    session: Session = Depends(get_session),
    locks: ModpackLocks = Depends(get_locks),
) -> ModpackOut:
    async with locked_modpack(modpack_id, session, locks) as modpack:
        try:
            add_mod_to_modpack(session, modpack, data.mod_id, disabled=data.disabled)
        except ModpackManagerError as exc:
            raise http_error(exc) from exc
    return modpack_to_out(session, modpack)


@router.delete("/{modpack_id}/mods/{mod_id}", response_model=ModpackOut)
async def remove_member(
    modpack_id: str,
    mod_id: str,
    session: Session = Depends(get_session),
    locks: ModpackLocks = Depends(get_locks),
) -> ModpackOut:
    async with locked_modpack(modpack_id, session, locks) as modpack:
        try:
            remove_mod_from_modpack(session, modpack, mod_id)
        except ModpackManagerError as exc:
            raise http_error(exc) from exc
    return modpack_to_out(session, modpack)


@router.put("/{modpack_id}/mods/{mod_id}", response_model=ModpackOut)
async def replace_member(
    modpack_id: str,
    mod_id: str,
    data: MemberReplace,
    session: Session = Depends(get_session),
    locks: ModpackLocks = Depends(get_locks),
) -> ModpackOut:
    """Swap a member for another library file, keeping its flags."""
    async with locked_modpack(modpack_id, session, locks) as modpack:
        try:
            replace_mod_in_modpack(session, modpack, mod_id, data.new_mod_id)
        except ModpackManagerError as exc:
            raise http_error(exc) from exc
    return modpack_to_out(session, modpack)


@router.patch("/{modpack_id}/mods/{mod_id}", response_model=ModpackOut)
async def set_member_flags(
    modpack_id: str,
    mod_id: str,
    data: MemberFlags,
    session: Session = Depends(get_session),
    locks: ModpackLocks = Depends(get_locks),
) -> ModpackOut:
    fields = data.model_dump(exclude_unset=True)
    async with locked_modpack(modpack_id, session, locks) as modpack:
        try:
            # Unlock first and lock last so a single request can edit a locked member
            if fields.get("locked") is False:
                set_mod_locked(session, modpack, mod_id, False)
            if "enabled" in fields and data.enabled is not None:
                set_mod_enabled(session, modpack, mod_id, data.enabled)
            if "note" in fields:
                set_mod_note(session, modpack, mod_id, data.note)
            if fields.get("locked") is True:
                set_mod_locked(session, modpack, mod_id, True)
        except ModpackManagerError as exc:
            raise http_error(exc) from exc
    return modpack_to_out(session, modpack)


@router.post("/{modpack_id}/mods/{mod_id}/toggle", response_model=ModpackOut)
async def toggle_member(
    modpack_id: str,
    mod_id: str,
    session: Session = Depends(get_session),
    locks: ModpackLocks = Depends(get_locks),
) -> ModpackOut:
    async with locked_modpack(modpack_id, session, locks) as modpack:
        try:
            toggle_mod(session, modpack, mod_id)
        except ModpackManagerError as exc:
            raise http_error(exc) from exc
    return modpack_to_out(session, modpack)
