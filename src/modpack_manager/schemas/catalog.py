"""Normalized catalog records, independent of the catalog's wire format."""

from pydantic import BaseModel


class CatalogDependency(BaseModel):
    project_id: int
    relation_type: int


class CatalogFile(BaseModel):
    id: int
    project_id: int
    display_name: str = ""
    file_name: str
    file_length: int = 0
    download_url: str | None = None
    game_versions: list[str] = []
    release_type: int = 1
    file_date: str = ""
    dependencies: list[CatalogDependency] = []


class CatalogMod(BaseModel):
    id: int
    name: str
    slug: str = ""
    summary: str = ""
    class_id: int | None = None
    download_count: int = 0
    logo_url: str | None = None
    authors: list[str] = []
