"""Tests for name normalization and artist splitting."""

import pytest

from soulscan.domain.value_objects import (
    UNKNOWN_ARTIST,
    clean_display_name,
    normalize_key,
    path_key,
    split_artist_names,
)


class TestNormalizeKey:
    """normalize_key is the dedup key for artists, albums and genres."""

    @pytest.mark.parametrize(
        "raw",
        ["The Beatles", "the beatles", "  THE  Beatles ", "The\tBeatles"],
    )
    def test_spellings_share_one_key(self, raw: str) -> None:
        assert normalize_key(raw) == "the beatles"

    def test_casefold_handles_german_sharp_s(self) -> None:
        assert normalize_key("Straße") == normalize_key("STRASSE")

    def test_nfkc_folds_full_width_letters(self) -> None:
        assert normalize_key("ＡＢＢＡ") == "abba"

    def test_articles_are_kept(self) -> None:
        # "The The" and "The" are different bands
        assert normalize_key("The The") != normalize_key("The")

    def test_blank_input_gives_empty_key(self) -> None:
        assert normalize_key("   ") == ""


class TestCleanDisplayName:
    def test_collapses_whitespace(self) -> None:
        assert clean_display_name("  Daft   Punk ") == "Daft Punk"

    def test_none_gives_empty_string(self) -> None:
        assert clean_display_name(None) == ""


class TestSplitArtistNames:
    """Splitting multi-artist tags with configured separators."""

    def test_splits_on_every_separator(self) -> None:
        assert split_artist_names("A feat. B; C", [" feat. ", "; "]) == ["A", "B", "C"]

    def test_separator_match_is_case_insensitive(self) -> None:
        assert split_artist_names("A FEAT. B", [" feat. "]) == ["A", "B"]

    def test_empty_separator_list_never_splits(self) -> None:
        assert split_artist_names("Simon & Garfunkel", []) == ["Simon & Garfunkel"]

    def test_ampersand_only_splits_when_configured(self) -> None:
        assert split_artist_names("Simon & Garfunkel", [" & "]) == ["Simon", "Garfunkel"]

    def test_duplicates_by_key_are_dropped_keeping_first_spelling(self) -> None:
        assert split_artist_names("Air; AIR; air", ["; "]) == ["Air"]

    def test_empty_pieces_are_dropped(self) -> None:
        assert split_artist_names("; A; ; B;", ["; ", ";"]) == ["A", "B"]

    def test_blank_tag_gives_no_names(self) -> None:
        assert split_artist_names("   ", ["; "]) == []
        assert split_artist_names(None, ["; "]) == []

    def test_unknown_artist_constant(self) -> None:
        assert UNKNOWN_ARTIST == "Unknown Artist"


def test_path_key_is_absolute(tmp_path) -> None:
    assert path_key(str(tmp_path / "a" / ".." / "b.mp3")) == path_key(str(tmp_path / "b.mp3"))
