"""Tests for the storage key namespace."""
import pytest

from imfolio.core.exceptions import InvalidStorageKey
from imfolio.core.keys import (
    GLOBAL_OWNER,
    build_key,
    guess_content_type,
    key_prefix,
    matches_prefix,
    owner_prefixes,
    parse_key,
)
from imfolio.models.enums import ImageCategory


class TestBuildKey:
    def test_builds_owner_key(self):
        assert build_key(ImageCategory.PHOTO, "u1", "2024/05/a.jpg") == "photo/u1/2024/05/a.jpg"

    def test_accepts_category_string(self):
        assert build_key("profile", "u1", "me.png") == "profile/u1/me.png"

    def test_global_hero(self):
        assert build_key(ImageCategory.HERO, None, "banner.jpg") == f"hero/{GLOBAL_OWNER}/banner.jpg"

    def test_photo_requires_owner(self):
        with pytest.raises(InvalidStorageKey):
            build_key(ImageCategory.PHOTO, None, "a.jpg")

    def test_reserved_owner_rejected(self):
        with pytest.raises(InvalidStorageKey):
            build_key(ImageCategory.PHOTO, GLOBAL_OWNER, "a.jpg")

    @pytest.mark.parametrize("owner", ["", "a/b", ".."])
    def test_bad_owner_rejected(self, owner):
        with pytest.raises(InvalidStorageKey):
            build_key(ImageCategory.PHOTO, owner, "a.jpg")

    @pytest.mark.parametrize("filename", ["", "/", "a//b.jpg", "../x.jpg"])
    def test_bad_filename_rejected(self, filename):
        with pytest.raises(InvalidStorageKey):
            build_key(ImageCategory.PHOTO, "u1", filename)

    def test_unknown_category_rejected(self):
        with pytest.raises(InvalidStorageKey):
            build_key("video", "u1", "a.mp4")


class TestParseKey:
    def test_parses_nested_filename(self):
        parts = parse_key("photo/u1/2024/05/a.jpg")
        assert parts is not None
        assert parts.category == ImageCategory.PHOTO
        assert parts.owner_id == "u1"
        assert parts.filename == "2024/05/a.jpg"
        assert parts.key == "photo/u1/2024/05/a.jpg"

    def test_global_hero_has_no_owner(self):
        parts = parse_key("hero/global/banner.jpg")
        assert parts is not None
        assert parts.owner_id is None

    @pytest.mark.parametrize(
        "key",
        [
            "",
            "photo",
            "photo/u1",
            "photo/u1/",
            "/photo/u1/a.jpg",
            "thumbnails/u1/a.jpg",
            "photo//a.jpg",
            "photo/global/a.jpg",
            "photo/u1/a//b.jpg",
        ],
    )
    def test_rejects_keys_outside_namespace(self, key):
        assert parse_key(key) is None

    def test_build_and_parse_agree(self):
        key = build_key(ImageCategory.HERO, "u9", "x.webp")
        parts = parse_key(key)
        assert parts is not None
        assert (parts.category, parts.owner_id, parts.filename) == (ImageCategory.HERO, "u9", "x.webp")


def test_owner_prefixes_cover_every_category():
    assert owner_prefixes("u1") == ["photo/u1/", "hero/u1/", "profile/u1/"]


def test_owner_prefixes_reject_reserved_owner():
    with pytest.raises(InvalidStorageKey):
        owner_prefixes(GLOBAL_OWNER)


def test_key_prefix_is_the_start_of_built_keys():
    assert key_prefix(ImageCategory.HERO, None) == f"hero/{GLOBAL_OWNER}/"
    assert build_key("photo", "u1", "a.jpg").startswith(key_prefix("photo", "u1"))


def test_guess_content_type():
    assert guess_content_type("photo/u1/a.jpg") == "image/jpeg"
    assert guess_content_type("photo/u1/blob") == "application/octet-stream"


def test_matches_prefix_ignores_empty_prefixes():
    assert matches_prefix("assets/logo.png", ["assets/"])
    assert not matches_prefix("photo/u1/a.jpg", ["", "assets/"])
