import os
import tempfile
from collections.abc import Generator
from pathlib import Path

# Keep the module-level engine away from the user's data directory
os.environ.setdefault("MPM_DATA_DIR", tempfile.mkdtemp(prefix="mpm-tests-"))

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlmodel import Session, SQLModel, create_engine  # noqa: E402
from sqlmodel.pool import StaticPool  # noqa: E402

import modpack_manager.models  # noqa: E402, F401  (registers all tables)
from modpack_manager.database import get_session  # noqa: E402
from modpack_manager.errors import ExternalServiceError  # noqa: E402
from modpack_manager.main import app  # noqa: E402
from modpack_manager.models.mod import Mod  # noqa: E402
from modpack_manager.models.modpack import Modpack  # noqa: E402
from modpack_manager.routers.deps import get_catalog  # noqa: E402
from modpack_manager.schemas.catalog import CatalogFile, CatalogMod  # noqa: E402
from modpack_manager.schemas.mod import ModCreate  # noqa: E402
from modpack_manager.schemas.modpack import ModpackCreate  # noqa: E402
from modpack_manager.services.library_service import add_mod  # noqa: E402
from modpack_manager.services.modpack_service import (  # noqa: E402
    add_mod_to_modpack,
    create_modpack,
)


class FakeCatalog:
    """In-memory catalog: projects and files are registered by the test."""

    def __init__(self) -> None:
        self.mods: dict[int, CatalogMod] = {}
        self.files: dict[tuple[int, int], CatalogFile] = {}
        self.failing: set[int] = set()
        self.calls: list[tuple[str, int]] = []
        self.downloads: list[str] = []

    def add(self, project_id: int, file_id: int, name: str | None = None) -> CatalogFile:
        name = name or f"Mod {project_id}"
        self.mods.setdefault(project_id, CatalogMod(id=project_id, name=name, class_id=6))
        slug = name.lower().replace(" ", "-")
        cfile = CatalogFile(
            id=file_id,
            project_id=project_id,
            display_name=f"{name} {file_id}",
            file_name=f"{slug}-{file_id}.jar",
            file_length=1024,
            download_url=f"https://files.example/{file_id}.jar",
            game_versions=["1.20.1", "Forge"],
        )
        self.files[(project_id, file_id)] = cfile
        return cfile

    def _check(self, op: str, project_id: int) -> None:
        self.calls.append((op, project_id))
        if project_id in self.failing:
            raise ExternalServiceError(f"catalog unavailable for {project_id}", retryable=True)

    async def search_mods(self, query, *, game_version=None, loader=None, content_type=None, page_size=20):
        return [m for m in self.mods.values() if query.lower() in m.name.lower()][:page_size]

    async def get_mod(self, project_id: int) -> CatalogMod | None:
        self._check("get_mod", project_id)
        return self.mods.get(project_id)

    async def get_file(self, project_id: int, file_id: int) -> CatalogFile | None:
        self._check("get_file", project_id)
        return self.files.get((project_id, file_id))

    async def get_mod_files(self, project_id: int, *, game_version=None, loader=None):
        self._check("get_mod_files", project_id)
        return sorted(
            (f for (p, _), f in self.files.items() if p == project_id),
            key=lambda f: f.id,
            reverse=True,
        )

    async def get_best_file(self, project_id, game_version, loader, content_type=None):
        files = await self.get_mod_files(project_id)
        return files[0] if files else None

    async def download_file(self, file: CatalogFile, dest: Path) -> Path:
        self._check("download", file.project_id)
        dest.parent.mkdir(parents=True, exist_ok=True)
        dest.write_bytes(f"{file.project_id}:{file.id}".encode())
        self.downloads.append(file.file_name)
        return dest


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(eng)
    return eng


@pytest.fixture(autouse=True)
def data_dirs(tmp_path, monkeypatch):
    """Point overrides and instances at the test's tmp directory."""
    monkeypatch.setattr("modpack_manager.config.settings.overrides_dir", tmp_path / "overrides")
    monkeypatch.setattr("modpack_manager.config.settings.instances_dir", tmp_path / "instances")
    return tmp_path


@pytest.fixture
def session(engine, monkeypatch):
    monkeypatch.setattr("modpack_manager.database.engine", engine)
    with Session(engine) as sess:
        yield sess


@pytest.fixture
def catalog():
    return FakeCatalog()


@pytest.fixture
def client(engine, catalog, monkeypatch):
    monkeypatch.setattr("modpack_manager.database.engine", engine)

    def _override_session() -> Generator[Session, None, None]:
        with Session(engine) as sess:
            yield sess

    app.dependency_overrides[get_session] = _override_session
    app.dependency_overrides[get_catalog] = lambda: catalog
    with TestClient(app, raise_server_exceptions=False) as tc:
        yield tc
    app.dependency_overrides.clear()


@pytest.fixture
def make_mod(session):
    def _make(project_id: int, file_id: int, name: str | None = None, **kwargs) -> Mod:
        name = name or f"Mod {project_id}"
        slug = name.lower().replace(" ", "-")
        data = ModCreate(
            project_id=str(project_id),
            file_id=str(file_id),
            name=name,
            version=f"{file_id}",
            filename=kwargs.pop("filename", f"{slug}-{file_id}.jar"),
            **kwargs,
        )
        return add_mod(session, data)

    return _make


@pytest.fixture
def make_modpack(session):
    def _make(name: str = "Test Pack", mods: list[Mod] | None = None, **kwargs) -> Modpack:
        data = ModpackCreate(
            name=name,
            game_version=kwargs.pop("game_version", "1.20.1"),
            loader=kwargs.pop("loader", "forge"),
            loader_version=kwargs.pop("loader_version", "47.2.0"),
            **kwargs,
        )
        modpack = create_modpack(session, data)
        for mod in mods or []:
            add_mod_to_modpack(session, modpack, mod.id)
        session.refresh(modpack)
        return modpack

    return _make
