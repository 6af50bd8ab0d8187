from datetime import UTC, datetime

from sqlmodel import Column, Field, SQLModel, Text


class PendingImport(SQLModel, table=True):
    """Import paused on conflicts, keyed by the partially built modpack."""

    __tablename__ = "pending_imports"

    modpack_id: str = Field(primary_key=True, foreign_key="modpacks.id", ondelete="CASCADE")
    # JSON list of schemas.imports.IncomingMod still awaiting a decision
    incoming: str = Field(default="[]", sa_column=Column(Text))
    # JSON list of schemas.imports.ImportConflict
    conflicts: str = Field(default="[]", sa_column=Column(Text))
    # JSON list of mod ids bound so far
    resolved_mod_ids: str = Field(default="[]", sa_column=Column(Text))
    # JSON of the manifest the import started from
    manifest: str = Field(default="{}", sa_column=Column(Text))
    initialize_history: bool = True
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
