from modpack_manager.models.instance import Instance
from modpack_manager.models.mod import Mod
from modpack_manager.models.modpack import Modpack, ModpackEntry
from modpack_manager.models.pending_import import PendingImport
from modpack_manager.models.version import ModpackVersion

__all__ = [
    "Instance",
    "Mod",
    "Modpack",
    "ModpackEntry",
    "ModpackVersion",
    "PendingImport",
]
