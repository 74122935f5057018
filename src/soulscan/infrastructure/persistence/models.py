"""SQLAlchemy ORM models for the SoulScan catalog."""

import uuid
from datetime import UTC, datetime

import sqlalchemy as sa
from sqlalchemy import (
    BigInteger,
    Column,
    ForeignKey,
    Index,
    Integer,
    String,
    Table,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


# Hey future me, utc_now() ensures ALL timestamps are UTC! Never use datetime.now()
# without a timezone - naive datetimes break cooldown comparisons.
def utc_now() -> datetime:
    """Get current UTC time."""
    return datetime.now(UTC)


def new_id() -> str:
    """Generate a new entity id (UUID4 string)."""
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


# =============================================================================
# Association tables
# Hey future me - these are written with Core insert/delete statements by the
# batch writer, not through relationship collections. Lazy-loading a
# collection inside an async session raises MissingGreenlet, and replacing
# the rows wholesale is what a re-scan wants anyway.
# =============================================================================

song_genres = Table(
    "song_genres",
    Base.metadata,
    Column(
        "song_id",
        String(36),
        ForeignKey("songs.id", ondelete="CASCADE"),
        primary_key=True,
    ),
    Column(
        "genre_id",
        String(36),
        ForeignKey("genres.id", ondelete="CASCADE"),
        primary_key=True,
        index=True,
    ),
)

# Secondary artist credits ("A feat. B" -> B). The primary artist lives on
# songs.artist_id, position 1.. orders the remaining names as tagged.
song_artists = Table(
    "song_artists",
    Base.metadata,
    Column(
        "song_id",
        String(36),
        ForeignKey("songs.id", ondelete="CASCADE"),
        primary_key=True,
    ),
    Column(
        "artist_id",
        String(36),
        ForeignKey("artists.id", ondelete="CASCADE"),
        primary_key=True,
        index=True,
    ),
    Column("position", Integer, nullable=False, default=1),
)


# =============================================================================
# Entities
# =============================================================================


class FolderModel(Base):
    """A library root folder. Owns every song found beneath it."""

    __tablename__ = "folders"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    path: Mapped[str] = mapped_column(String(1024), nullable=False, unique=True)
    # os.path.normcase'd path - case-insensitive where the OS is
    path_key: Mapped[str] = mapped_column(String(1024), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    last_scanned_at: Mapped[datetime | None] = mapped_column(
        sa.DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(default=utc_now, nullable=False)

    songs: Mapped[list["SongModel"]] = relationship(
        "SongModel", back_populates="folder", passive_deletes="all"
    )


# Listen up, name is the display spelling from the FIRST file that mentioned
# the artist. name_key is the normalized form and carries the UNIQUE
# constraint - that's what keeps "The Beatles" and "the beatles" one row even
# when two scans race each other.
class ArtistModel(Base):
    """SQLAlchemy model for Artist entity."""

    __tablename__ = "artists"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    name_key: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    biography: Mapped[str | None] = mapped_column(Text, nullable=True)
    # image_url = remote provider URL, image_path = local cached file
    image_url: Mapped[str | None] = mapped_column(String(512), nullable=True)
    image_path: Mapped[str | None] = mapped_column(String(512), nullable=True)
    # Cooldown anchor for enrichment - set on every attempt, hit or miss
    metadata_checked_at: Mapped[datetime | None] = mapped_column(
        sa.DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(default=utc_now, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        default=utc_now, onupdate=utc_now, nullable=False
    )

    albums: Mapped[list["AlbumModel"]] = relationship(
        "AlbumModel", back_populates="artist", passive_deletes="all"
    )
    songs: Mapped[list["SongModel"]] = relationship(
        "SongModel", back_populates="artist", passive_deletes="all"
    )


class AlbumModel(Base):
    """SQLAlchemy model for Album entity."""

    __tablename__ = "albums"
    __table_args__ = (
        UniqueConstraint("title_key", "artist_id", name="uq_albums_title_artist"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    title_key: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    artist_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("artists.id", ondelete="RESTRICT"), nullable=False
    )
    year: Mapped[int | None] = mapped_column(Integer, nullable=True)
    cover_url: Mapped[str | None] = mapped_column(String(512), nullable=True)
    cover_path: Mapped[str | None] = mapped_column(String(512), nullable=True)
    metadata_checked_at: Mapped[datetime | None] = mapped_column(
        sa.DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(default=utc_now, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        default=utc_now, onupdate=utc_now, nullable=False
    )

    artist: Mapped["ArtistModel"] = relationship("ArtistModel", back_populates="albums")
    songs: Mapped[list["SongModel"]] = relationship(
        "SongModel", back_populates="album", passive_deletes="all"
    )


class GenreModel(Base):
    """SQLAlchemy model for Genre entity."""

    __tablename__ = "genres"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    name_key: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    created_at: Mapped[datetime] = mapped_column(default=utc_now, nullable=False)


# Hey future me - file_mtime_ns is the raw st_mtime_ns integer. Storing a float
# or a datetime loses precision on some filesystems and every song would show
# up as "modified" on the next scan. Compare integers, always.
class SongModel(Base):
    """SQLAlchemy model for Song entity (one audio file on disk)."""

    __tablename__ = "songs"
    __table_args__ = (Index("ix_songs_folder_path", "folder_id", "path_key"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    path: Mapped[str] = mapped_column(String(1024), nullable=False, unique=True)
    path_key: Mapped[str] = mapped_column(String(1024), nullable=False, unique=True)
    folder_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("folders.id", ondelete="RESTRICT"), nullable=False
    )
    title: Mapped[str] = mapped_column(String(512), nullable=False)
    artist_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("artists.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    album_id: Mapped[str | None] = mapped_column(
        String(36),
        ForeignKey("albums.id", ondelete="RESTRICT"),
        nullable=True,
        index=True,
    )
    duration_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    track_number: Mapped[int | None] = mapped_column(Integer, nullable=True)
    track_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    disc_number: Mapped[int | None] = mapped_column(Integer, nullable=True)
    disc_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    year: Mapped[int | None] = mapped_column(Integer, nullable=True)
    bitrate: Mapped[int | None] = mapped_column(Integer, nullable=True)
    sample_rate: Mapped[int | None] = mapped_column(Integer, nullable=True)
    channels: Mapped[int | None] = mapped_column(Integer, nullable=True)
    replaygain_track_gain: Mapped[float | None] = mapped_column(sa.Float, nullable=True)
    replaygain_track_peak: Mapped[float | None] = mapped_column(sa.Float, nullable=True)
    file_size: Mapped[int] = mapped_column(BigInteger, nullable=False)
    file_mtime_ns: Mapped[int] = mapped_column(BigInteger, nullable=False)
    date_added: Mapped[datetime] = mapped_column(default=utc_now, nullable=False)
    play_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_played_at: Mapped[datetime | None] = mapped_column(
        sa.DateTime(timezone=True), nullable=True
    )
    cover_art_path: Mapped[str | None] = mapped_column(String(512), nullable=True)
    lyrics_path: Mapped[str | None] = mapped_column(String(512), nullable=True)
    lyrics_checked_at: Mapped[datetime | None] = mapped_column(
        sa.DateTime(timezone=True), nullable=True
    )
    last_scanned_at: Mapped[datetime] = mapped_column(
        default=utc_now, onupdate=utc_now, nullable=False
    )

    folder: Mapped["FolderModel"] = relationship("FolderModel", back_populates="songs")
    artist: Mapped["ArtistModel"] = relationship("ArtistModel", back_populates="songs")
    album: Mapped["AlbumModel | None"] = relationship("AlbumModel", back_populates="songs")
