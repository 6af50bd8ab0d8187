"""Stable string ids for catalog files.

A mod id encodes ``(source, project_id, file_id)`` as ``cf-<project>-<file>``
for CurseForge and ``mr-<project>-<version>`` for Modrinth. Two files of the
same project always get different ids; diffs match on :attr:`ModRef.project_key`.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import StrEnum

DISABLED_SUFFIX = ".disabled"

_ID_RE = re.compile(r"^(cf|mr)-([A-Za-z0-9]+)-([A-Za-z0-9]+)$")


class ModSource(StrEnum):
    curseforge = "curseforge"
    modrinth = "modrinth"


_PREFIX = {ModSource.curseforge: "cf", ModSource.modrinth: "mr"}
_SOURCE = {v: k for k, v in _PREFIX.items()}


@dataclass(frozen=True)
class ModRef:
    source: ModSource
    project_id: str
    file_id: str

    @property
    def mod_id(self) -> str:
        return f"{_PREFIX[self.source]}-{self.project_id}-{self.file_id}"

    @property
    def project_key(self) -> str:
        return f"{_PREFIX[self.source]}-{self.project_id}"


def make_mod_id(
    source: ModSource | str, project_id: int | str, file_id: int | str
) -> str:
    return ModRef(ModSource(source), str(project_id), str(file_id)).mod_id


def parse_mod_id(mod_id: str) -> ModRef | None:
    """Return the provenance encoded in ``mod_id``, or None for legacy ids."""
    m = _ID_RE.match(mod_id)
    if not m:
        return None
    return ModRef(_SOURCE[m.group(1)], m.group(2), m.group(3))


def project_key_for(source: ModSource | str, project_id: int | str) -> str:
    return f"{_PREFIX[ModSource(source)]}-{project_id}"


def project_key_of(mod_id: str) -> str:
    """Project identity for ``mod_id``; unparseable ids are their own project."""
    ref = parse_mod_id(mod_id)
    return ref.project_key if ref else mod_id


def disabled_filename(filename: str) -> str:
    if filename.endswith(DISABLED_SUFFIX):
        return filename
    return filename + DISABLED_SUFFIX


def enabled_filename(filename: str) -> str:
    if filename.endswith(DISABLED_SUFFIX):
        return filename[: -len(DISABLED_SUFFIX)]
    return filename
