"""Error taxonomy shared by services and routers.

Conflicts during import and per-item failures during rollback or sync are
not exceptions: they travel inside result objects. Everything here aborts
the call that raised it.
"""


class ModpackManagerError(Exception):
    pass


class NotFoundError(ModpackManagerError, LookupError):
    def __init__(self, kind: str, key: str) -> None:
        self.kind = kind
        self.key = key
        super().__init__(f"{kind} '{key}' not found")


class ExternalServiceError(ModpackManagerError):
    """A catalog, remote manifest or publish target call failed."""

    def __init__(
        self, message: str, *, status_code: int | None = None, retryable: bool = False
    ) -> None:
        self.status_code = status_code
        self.retryable = retryable
        super().__init__(message)


class ManifestValidationError(ModpackManagerError, ValueError):
    pass


class LockedModError(ModpackManagerError, ValueError):
    def __init__(self, mod_id: str, action: str) -> None:
        self.mod_id = mod_id
        self.action = action
        super().__init__(f"Cannot {action} locked mod '{mod_id}'")


class EmptyCommitError(ModpackManagerError, ValueError):
    def __init__(self, modpack_id: str) -> None:
        self.modpack_id = modpack_id
        super().__init__(f"No changes to commit for modpack '{modpack_id}'")


class AlreadyExistsError(ModpackManagerError, ValueError):
    pass
