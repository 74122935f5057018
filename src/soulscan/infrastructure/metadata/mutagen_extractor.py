"""Tag reading with mutagen.

Hey future me - this runs on a worker thread (see LibraryScannerService), so
everything here is plain blocking code. It must never touch the database or
the event loop. One instance is shared by all worker threads, which is fine
because it holds no per-file state.

Tag containers differ wildly:
- ID3 (mp3, aiff, wav): frame ids like TIT2/TPE1, TRCK as "3/12", art in APIC
- Vorbis comments (flac, ogg, opus): lowercase keys, lists of strings,
  FLAC art in audio.pictures, Ogg art base64'd in METADATA_BLOCK_PICTURE
- MP4 atoms (m4a, mp4): ©nam/©ART, trkn/disk as (n, total) tuples, covr art
- APEv2 (ape, wv, mpc): case-insensitive "Title"/"Track"/"Album Artist"
- ASF (wma): WM/AlbumTitle etc. with attribute objects

Lyrics come from SYLT (synced, rendered as LRC), USLT, Vorbis LYRICS, MP4
©lyr or WM/Lyrics, and fall back to a `<same name>.lrc` next to the file.
ReplayGain keys are matched case-insensitively on their last ":" segment,
which covers TXXX:REPLAYGAIN_TRACK_GAIN, Vorbis replaygain_track_gain and
the iTunes ----:com.apple.iTunes:replaygain_track_gain freeform atom.
"""

import base64
import binascii
import logging
import os
import re
from pathlib import Path
from typing import Any

from mutagen import File as MutagenFile
from mutagen import MutagenError
from mutagen.flac import Picture

from soulscan.domain.entities import SongMetadata
from soulscan.domain.exceptions import ExtractionFailedError
from soulscan.domain.ports import IMetadataExtractor

logger = logging.getLogger(__name__)

# Sidecar cover images, checked when a file has no embedded art
COVER_FILE_NAMES = ("cover", "folder", "album", "front")
COVER_FILE_EXTENSIONS = {".jpg": "image/jpeg", ".jpeg": "image/jpeg", ".png": "image/png"}

# Front cover picture type in both ID3 APIC and FLAC METADATA_BLOCK_PICTURE
FRONT_COVER = 3

_FIELD_KEYS: dict[str, tuple[str, ...]] = {
    "title": ("TIT2", "title", "©nam", "Title"),
    "artist": ("TPE1", "artist", "©ART", "Author", "Artist"),
    "album": ("TALB", "album", "©alb", "WM/AlbumTitle"),
    "album_artist": (
        "TPE2",
        "albumartist",
        "album artist",
        "album_artist",
        "aART",
        "WM/AlbumArtist",
    ),
    "genre": ("TCON", "genre", "©gen", "WM/Genre"),
    "track": ("TRCK", "tracknumber", "trkn", "WM/TrackNumber", "track"),
    "track_total": ("tracktotal", "totaltracks"),
    "disc": ("TPOS", "discnumber", "disk", "WM/PartOfSet", "disc"),
    "disc_total": ("disctotal", "totaldiscs"),
    "year": ("TDRC", "TYER", "date", "year", "©day", "WM/Year"),
    "lyrics": ("lyrics", "unsyncedlyrics", "©lyr", "WM/Lyrics", "Lyrics"),
}

_GENRE_SPLIT = re.compile(r"\s*[;\x00]\s*")
_YEAR = re.compile(r"(\d{4})")
_GAIN = re.compile(r"^[-+]?[0-9]*\.?[0-9]+")

REPLAYGAIN_TRACK_GAIN = "replaygain_track_gain"
REPLAYGAIN_TRACK_PEAK = "replaygain_track_peak"

# SYLT timestamp format 2 = milliseconds (1 would be MPEG frames)
SYLT_MILLISECONDS = 2


class MutagenMetadataExtractor(IMetadataExtractor):
    """Reads SongMetadata from audio files with mutagen."""

    def __init__(self, read_sidecar_covers: bool = True, read_sidecar_lyrics: bool = True) -> None:
        self.read_sidecar_covers = read_sidecar_covers
        self.read_sidecar_lyrics = read_sidecar_lyrics

    def extract(self, path: str) -> SongMetadata:
        """Read tags and stream info from one file.

        Args:
            path: Absolute file path

        Returns:
            Extracted metadata (title falls back to the file name)

        Raises:
            ExtractionFailedError: Unreadable or unsupported file
        """
        try:
            audio = MutagenFile(path)
        except (MutagenError, OSError) as e:
            raise ExtractionFailedError(path, str(e) or e.__class__.__name__) from e
        if audio is None:
            raise ExtractionFailedError(path, "unsupported or unrecognized audio format")

        tags = audio.tags
        title = self._first(tags, "title") or Path(path).stem
        track_number, track_count = self._number_pair(self._raw(tags, "track"))
        disc_number, disc_count = self._number_pair(self._raw(tags, "disc"))
        track_count = track_count or self._int(self._first(tags, "track_total"))
        disc_count = disc_count or self._int(self._first(tags, "disc_total"))

        metadata = SongMetadata(
            path=path,
            title=title.strip() or Path(path).stem,
            artists=self._all(tags, "artist"),
            album=self._first(tags, "album"),
            album_artist=self._first(tags, "album_artist"),
            genres=self._genres(tags),
            track_number=track_number,
            track_count=track_count,
            disc_number=disc_number,
            disc_count=disc_count,
            year=self._year(self._first(tags, "year")),
            replaygain_track_gain=self._replaygain(tags, REPLAYGAIN_TRACK_GAIN),
            replaygain_track_peak=self._replaygain(tags, REPLAYGAIN_TRACK_PEAK),
        )

        info = audio.info
        length = getattr(info, "length", None)
        if length:
            metadata.duration_ms = int(length * 1000)
        bitrate = getattr(info, "bitrate", None)
        if bitrate:
            # mutagen reports bits per second; we store kbps
            metadata.bitrate = int(bitrate) // 1000
        metadata.sample_rate = getattr(info, "sample_rate", None) or None
        metadata.channels = getattr(info, "channels", None) or None

        art = self._embedded_cover(audio)
        if art is None and self.read_sidecar_covers:
            art = self._sidecar_cover(path)
        if art is not None:
            metadata.cover_art, metadata.cover_art_mime = art

        metadata.lyrics = self._embedded_lyrics(tags)
        if metadata.lyrics is None and self.read_sidecar_lyrics:
            metadata.lyrics = self._sidecar_lyrics(path)

        return metadata

    # =========================================================================
    # Tag lookups
    # =========================================================================

    def _raw(self, tags: Any, field: str) -> Any:
        """Return the raw value for the first key present in the container."""
        if not tags:
            return None
        for key in _FIELD_KEYS[field]:
            try:
                if key in tags:
                    return tags[key]
            except (KeyError, ValueError, TypeError):
                # Some containers reject keys of the wrong shape (MP4 atoms vs "title")
                continue
        return None

    def _values(self, value: Any) -> list[str]:
        """Flatten any tag value shape to a list of strings."""
        if value is None:
            return []
        if hasattr(value, "genres"):  # ID3 TCON resolves "(17)" style ids
            return [str(v) for v in value.genres]
        if isinstance(value, bytes):  # MP4 freeform atoms
            return [value.decode("utf-8", errors="replace")]
        if hasattr(value, "text"):  # ID3 text frames
            return [str(v) for v in value.text]
        if isinstance(value, list | tuple):
            flat: list[str] = []
            for item in value:
                flat.extend(self._values(item))
            return flat
        if hasattr(value, "value"):  # ASF attributes
            return [str(value.value)]
        return [str(value)]

    def _all(self, tags: Any, field: str) -> list[str]:
        return [v.strip() for v in self._values(self._raw(tags, field)) if v and v.strip()]

    def _first(self, tags: Any, field: str) -> str | None:
        values = self._all(tags, field)
        return values[0] if values else None

    def _genres(self, tags: Any) -> list[str]:
        genres: list[str] = []
        for value in self._all(tags, "genre"):
            genres.extend(g for g in _GENRE_SPLIT.split(value) if g)
        return genres

    @staticmethod
    def _int(value: Any) -> int | None:
        try:
            number = int(str(value).strip())
        except (TypeError, ValueError):
            return None
        return number if number > 0 else None

    def _number_pair(self, value: Any) -> tuple[int | None, int | None]:
        """Parse "3/12", (3, 12), ["3"] and friends into (number, total)."""
        if value is None:
            return None, None
        if isinstance(value, list) and value:
            value = value[0]
        if isinstance(value, tuple):  # MP4 trkn/disk
            number = self._int(value[0]) if len(value) > 0 else None
            total = self._int(value[1]) if len(value) > 1 else None
            return number, total
        values = self._values(value)
        if not values:
            return None, None
        number, _, total = values[0].partition("/")
        return self._int(number), self._int(total) if total else None

    @staticmethod
    def _year(value: str | None) -> int | None:
        if not value:
            return None
        match = _YEAR.search(value)
        if not match:
            return None
        year = int(match.group(1))
        return year if year > 0 else None

    def _replaygain(self, tags: Any, name: str) -> float | None:
        """Parse "-6.54 dB" / "0.988" style values for one ReplayGain key."""
        if not tags:
            return None
        try:
            keys = list(tags.keys())
        except (AttributeError, TypeError):
            return None
        for key in keys:
            if str(key).lower().rsplit(":", 1)[-1] != name:
                continue
            for value in self._values(tags[key]):
                match = _GAIN.match(value.strip())
                if match:
                    return float(match.group(0))
        return None

    # =========================================================================
    # Lyrics
    # =========================================================================

    def _embedded_lyrics(self, tags: Any) -> str | None:
        if not tags:
            return None

        # ID3: synced first, rendered as LRC so players can follow along
        if hasattr(tags, "getall"):
            for frame in tags.getall("SYLT"):
                if frame.format == SYLT_MILLISECONDS and frame.text:
                    return "\n".join(f"{_lrc_timestamp(ms)}{text}" for text, ms in frame.text)
            for frame in tags.getall("USLT"):
                if str(frame.text).strip():
                    return str(frame.text).strip()
            return None

        for value in self._values(self._raw(tags, "lyrics")):
            if value.strip():
                return value.strip()
        return None

    def _sidecar_lyrics(self, path: str) -> str | None:
        """Look for "<file name>.lrc" (any case) next to the file."""
        directory, name = os.path.split(path)
        stem = os.path.splitext(name)[0].lower()
        try:
            names = os.listdir(directory)
        except OSError:
            return None
        for candidate in sorted(names):
            candidate_stem, ext = os.path.splitext(candidate)
            if ext.lower() != ".lrc" or candidate_stem.lower() != stem:
                continue
            try:
                lyrics_file = os.path.join(directory, candidate)
                with open(lyrics_file, encoding="utf-8-sig", errors="replace") as fh:
                    text = fh.read().strip()
            except OSError as e:
                logger.debug(f"Could not read lyrics file {candidate}: {e}")
                continue
            if text:
                return text
        return None

    # =========================================================================
    # Cover art
    # =========================================================================

    def _embedded_cover(self, audio: Any) -> tuple[bytes, str] | None:
        # FLAC
        pictures = getattr(audio, "pictures", None)
        if pictures:
            picture = self._pick_front(pictures)
            return bytes(picture.data), picture.mime or "image/jpeg"

        tags = audio.tags
        if not tags:
            return None

        # ID3
        if hasattr(tags, "getall"):
            frames = tags.getall("APIC")
            if frames:
                frame = self._pick_front(frames)
                return bytes(frame.data), frame.mime or "image/jpeg"
            return None

        # MP4
        try:
            covers = tags["covr"] if "covr" in tags else None
        except (KeyError, ValueError, TypeError):
            covers = None
        if covers:
            cover = covers[0]
            mime = "image/png" if getattr(cover, "imageformat", None) == 14 else "image/jpeg"
            return bytes(cover), mime

        # Ogg Vorbis / Opus
        try:
            encoded = tags.get("metadata_block_picture")
        except (KeyError, ValueError, TypeError, AttributeError):
            encoded = None
        if encoded:
            try:
                picture = Picture(base64.b64decode(encoded[0]))
            except (binascii.Error, MutagenError, ValueError) as e:
                logger.debug(f"Ignoring broken METADATA_BLOCK_PICTURE: {e}")
                return None
            return bytes(picture.data), picture.mime or "image/jpeg"
        return None

    @staticmethod
    def _pick_front(pictures: list[Any]) -> Any:
        for picture in pictures:
            if getattr(picture, "type", None) == FRONT_COVER:
                return picture
        return pictures[0]

    def _sidecar_cover(self, path: str) -> tuple[bytes, str] | None:
        """Look for cover.jpg / folder.png etc. next to the file."""
        directory = os.path.dirname(path)
        try:
            names = os.listdir(directory)
        except OSError:
            return None
        for name in sorted(names):
            stem, ext = os.path.splitext(name)
            mime = COVER_FILE_EXTENSIONS.get(ext.lower())
            if mime is None or stem.lower() not in COVER_FILE_NAMES:
                continue
            try:
                with open(os.path.join(directory, name), "rb") as fh:
                    return fh.read(), mime
            except OSError as e:
                logger.debug(f"Could not read cover file {name}: {e}")
        return None


def _lrc_timestamp(milliseconds: int) -> str:
    minutes, rest = divmod(max(int(milliseconds), 0), 60_000)
    return f"[{minutes:02d}:{rest / 1000:05.2f}]"
