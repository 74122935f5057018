"""Persistence layer: ORM models, database sessions and the batch writer."""

from soulscan.infrastructure.persistence.database import Database
from soulscan.infrastructure.persistence.models import (
    AlbumModel,
    ArtistModel,
    Base,
    FolderModel,
    GenreModel,
    SongModel,
    song_artists,
    song_genres,
)

__all__ = [
    "AlbumModel",
    "ArtistModel",
    "Base",
    "Database",
    "FolderModel",
    "GenreModel",
    "SongModel",
    "song_artists",
    "song_genres",
]
