"""Tests for FolderService."""

from pathlib import Path

import pytest
from sqlalchemy import func, select

from soulscan.application.services import FolderService
from soulscan.domain.exceptions import (
    ConfigurationError,
    EntityNotFoundException,
    FolderNotEmptyError,
)
from soulscan.infrastructure.cache import LocalFileCache
from soulscan.infrastructure.persistence import ArtistModel, Database, SongModel


@pytest.fixture
def folders(db: Database, cache: LocalFileCache) -> FolderService:
    return FolderService(db, cache)


async def _add_songs(db: Database, folder_id: str, count: int) -> None:
    async with db.session_scope() as session:
        session.add(ArtistModel(id=f"artist-{folder_id}", name="X", name_key=f"x-{folder_id}"))
        await session.flush()
        for index in range(count):
            path = f"/songs/{folder_id}/{index}.mp3"
            session.add(
                SongModel(
                    path=path, path_key=path, folder_id=folder_id, title=f"Song {index}",
                    artist_id=f"artist-{folder_id}", file_size=1, file_mtime_ns=1,
                )
            )


class TestAddFolder:
    async def test_registers_with_directory_name(
        self, folders: FolderService, library_dir: Path
    ) -> None:
        info = await folders.add_folder(library_dir)

        assert info.path == str(library_dir)
        assert info.name == "music"
        assert info.song_count == 0
        assert info.last_scanned_at is None

    async def test_adding_twice_returns_existing(
        self, folders: FolderService, library_dir: Path
    ) -> None:
        first = await folders.add_folder(library_dir, name="Main")
        second = await folders.add_folder(str(library_dir) + "/")

        assert second.id == first.id
        assert len(await folders.list_folders()) == 1

    async def test_missing_directory(self, folders: FolderService, tmp_path: Path) -> None:
        with pytest.raises(ConfigurationError, match="does not exist"):
            await folders.add_folder(tmp_path / "nope")

    async def test_nested_folders_are_rejected(
        self, folders: FolderService, library_dir: Path
    ) -> None:
        inner = library_dir / "Rock"
        inner.mkdir()
        await folders.add_folder(library_dir)

        with pytest.raises(ConfigurationError, match="overlaps"):
            await folders.add_folder(inner)

    async def test_parent_of_registered_folder_is_rejected(
        self, folders: FolderService, library_dir: Path
    ) -> None:
        inner = library_dir / "Rock"
        inner.mkdir()
        await folders.add_folder(inner)

        with pytest.raises(ConfigurationError):
            await folders.add_folder(library_dir)

    async def test_sibling_with_common_prefix_is_fine(
        self, folders: FolderService, tmp_path: Path
    ) -> None:
        (tmp_path / "music").mkdir(exist_ok=True)
        (tmp_path / "music2").mkdir()
        await folders.add_folder(tmp_path / "music")
        await folders.add_folder(tmp_path / "music2")

        assert [f.name for f in await folders.list_folders()] == ["music", "music2"]


class TestQueries:
    async def test_list_counts_songs_per_folder(
        self, db: Database, folders: FolderService, tmp_path: Path
    ) -> None:
        (tmp_path / "a").mkdir()
        (tmp_path / "b").mkdir()
        a = await folders.add_folder(tmp_path / "a")
        b = await folders.add_folder(tmp_path / "b")
        await _add_songs(db, a.id, 3)

        counts = {f.id: f.song_count for f in await folders.list_folders()}

        assert counts == {a.id: 3, b.id: 0}
        assert (await folders.get_folder(a.id)).song_count == 3

    async def test_get_unknown_folder(self, folders: FolderService) -> None:
        with pytest.raises(EntityNotFoundException):
            await folders.get_folder("missing")

    async def test_find_by_path_matches_root_and_subpaths(
        self, folders: FolderService, library_dir: Path, tmp_path: Path
    ) -> None:
        info = await folders.add_folder(library_dir)

        assert (await folders.find_by_path(library_dir)).id == info.id
        assert (await folders.find_by_path(library_dir / "Rock" / "x.mp3")).id == info.id
        assert await folders.find_by_path(tmp_path / "musicians") is None

    async def test_to_dict(self, folders: FolderService, library_dir: Path) -> None:
        data = (await folders.add_folder(library_dir)).to_dict()

        assert data["path"] == str(library_dir)
        assert data["last_scanned_at"] is None
        assert isinstance(data["created_at"], str)


class TestRemoveFolder:
    async def test_empty_folder_is_removed(
        self, folders: FolderService, library_dir: Path
    ) -> None:
        info = await folders.add_folder(library_dir)

        report = await folders.remove_folder(info.id)

        assert report.deleted_songs == 0
        assert await folders.list_folders() == []

    async def test_folder_with_songs_needs_cascade(
        self, db: Database, folders: FolderService, library_dir: Path
    ) -> None:
        info = await folders.add_folder(library_dir)
        await _add_songs(db, info.id, 2)

        with pytest.raises(FolderNotEmptyError) as exc_info:
            await folders.remove_folder(info.id)
        assert exc_info.value.song_count == 2
        assert len(await folders.list_folders()) == 1

    async def test_cascade_deletes_songs_and_orphans(
        self, db: Database, folders: FolderService, library_dir: Path
    ) -> None:
        info = await folders.add_folder(library_dir)
        await _add_songs(db, info.id, 2)

        report = await folders.remove_folder(info.id, cascade=True)

        assert report.deleted_songs == 2
        assert report.deleted_artists == 1
        assert await folders.list_folders() == []
        async with db.session_scope() as session:
            assert (await session.execute(select(func.count(SongModel.id)))).scalar_one() == 0

    async def test_unknown_folder(self, folders: FolderService) -> None:
        with pytest.raises(EntityNotFoundException):
            await folders.remove_folder("missing")

    async def test_reset_library_keeps_folders(
        self, db: Database, folders: FolderService, library_dir: Path
    ) -> None:
        info = await folders.add_folder(library_dir)
        await _add_songs(db, info.id, 4)

        report = await folders.reset_library()

        assert report.deleted_songs == 4
        assert [f.id for f in await folders.list_folders()] == [info.id]
