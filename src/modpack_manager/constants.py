from enum import StrEnum


class ContentType(StrEnum):
    mod = "mod"
    resourcepack = "resourcepack"
    shader = "shader"


CONTENT_FOLDERS: dict[ContentType, str] = {
    ContentType.mod: "mods",
    ContentType.resourcepack: "resourcepacks",
    ContentType.shader: "shaderpacks",
}

# File extensions counted as "extra" when found untracked in a content folder.
CONTENT_EXTENSIONS: dict[ContentType, tuple[str, ...]] = {
    ContentType.mod: (".jar",),
    ContentType.resourcepack: (".zip",),
    ContentType.shader: (".zip",),
}

CONFIG_FOLDERS = ("config", "kubejs", "defaultconfigs", "scripts")
OVERRIDE_PACK_FOLDERS = ("resourcepacks", "shaderpacks", "global_packs")
INSTANCE_FOLDERS = (
    "mods",
    "resourcepacks",
    "shaderpacks",
    *CONFIG_FOLDERS,
    "saves",
    "logs",
)

# CurseForge class ids
CF_GAME_ID = 432
CF_CLASS_IDS: dict[ContentType, int] = {
    ContentType.mod: 6,
    ContentType.resourcepack: 12,
    ContentType.shader: 6552,
}

CF_LOADER_TYPES: dict[str, int] = {
    "any": 0,
    "forge": 1,
    "cauldron": 2,
    "liteloader": 3,
    "fabric": 4,
    "quilt": 5,
    "neoforge": 6,
}

KNOWN_LOADERS = ("forge", "fabric", "quilt", "neoforge")

CF_RELEASE_TYPES = {1: "release", 2: "beta", 3: "alpha"}

CF_DEPENDENCY_TYPES = {
    1: "embedded",
    2: "optional",
    3: "required",
    4: "tool",
    5: "incompatible",
    6: "include",
}

MANIFEST_VERSION = "2.1"
SHARE_CODE_PREFIX = "MPK"
