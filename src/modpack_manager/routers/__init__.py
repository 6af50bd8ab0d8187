from fastapi import APIRouter

from modpack_manager.routers.imports import router as imports_router
from modpack_manager.routers.instances import router as instances_router
from modpack_manager.routers.library import router as library_router
from modpack_manager.routers.modpacks import router as modpacks_router
from modpack_manager.routers.remote import router as remote_router
from modpack_manager.routers.versions import router as versions_router

api_router = APIRouter(prefix="/api/v1")
api_router.include_router(library_router)
api_router.include_router(modpacks_router)
api_router.include_router(versions_router)
api_router.include_router(imports_router)
api_router.include_router(instances_router)
api_router.include_router(remote_router)
