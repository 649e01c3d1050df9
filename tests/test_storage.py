"""
Tests for cache path helpers.

Covers separator normalization, cache layout per variant and purging.
"""
import os

from media_delivery.formats import FormatKey
from media_delivery.storage import (
    CachePathResolver,
    ensure_sep,
    is_safe_relative,
    normalize_folder_absolute,
    normalize_folder_relative,
)


class TestSeparators:
    """Separator normalization."""

    def test_ensure_sep(self):
        assert ensure_sep("a//b\\c/") == "a/b/c"
        assert ensure_sep("a/b", leading=True) == "/a/b"
        assert ensure_sep("/a/b", trailing=True) == "a/b/"
        assert ensure_sep("", leading=True) == "/"
        assert ensure_sep(None) == ""

    def test_normalize_folder_relative(self):
        assert normalize_folder_relative("a/b") == "a/b/"
        assert normalize_folder_relative("/a/b/") == "a/b/"
        assert normalize_folder_relative("") == ""

    def test_normalize_folder_absolute(self, tmp_path):
        result = normalize_folder_absolute(tmp_path)
        assert result.startswith("/")
        assert result.endswith("/")
        assert result.rstrip("/") == str(tmp_path).replace("\\", "/").rstrip("/")

    def test_is_safe_relative(self):
        assert is_safe_relative("2024/05/photo.jpg")
        assert is_safe_relative("/photo.jpg")
        assert not is_safe_relative("../secret.jpg")
        assert not is_safe_relative("a/../../b.jpg")
        assert not is_safe_relative("")


class TestCachePaths:
    """Cache layout per format variant."""

    def test_thumb_retina_scenario(self, delivery_config, tmp_path):
        paths = CachePathResolver(delivery_config, tmp_path / "orig", tmp_path / "cache")
        key = FormatKey("thumb", retina=True)
        file = "2024/05/photo.tif"
        assert paths.cache_folder(file, key) == "thumb-retina/2024/05/"
        assert paths.cache_filename(file, key) == "photo.jpg"
        assert paths.cache_path(file, key) == "thumb-retina/2024/05/photo.jpg"

    def test_cache_path_is_stable(self, delivery_config, tmp_path):
        paths = CachePathResolver(delivery_config, tmp_path / "orig", tmp_path / "cache")
        key = FormatKey("preview", retina=True, watermarked=True)
        first = paths.cache_path("\\2024//05/photo.jpg", key)
        assert first == paths.cache_path("2024/05/photo.jpg", key)
        assert first == "preview-watermarked-retina/2024/05/photo.jpg"

    def test_png_type(self, delivery_config, tmp_path):
        paths = CachePathResolver(delivery_config, tmp_path / "orig", tmp_path / "cache")
        assert paths.cache_path("logo.gif", FormatKey("icon")) == "icon/logo.png"

    def test_absolute_and_original_paths(self, delivery_config, tmp_path):
        paths = CachePathResolver(delivery_config, tmp_path / "orig", tmp_path / "cache")
        assert paths.absolute_cache_path("a.jpg", FormatKey("thumb")) == (
            normalize_folder_absolute(tmp_path / "cache") + "thumb/a.jpg"
        )
        assert paths.original_path("/x/a.jpg") == normalize_folder_absolute(tmp_path / "orig") + "x/a.jpg"

    def test_enumerate_cache_paths(self, delivery_config, tmp_path):
        paths = CachePathResolver(delivery_config, tmp_path / "orig", tmp_path / "cache")
        thumb = paths.enumerate_cache_paths("2024/photo.jpg", format="thumb")
        assert len(thumb) == len(set(thumb))
        assert "thumb/2024/photo.jpg" in thumb
        assert "thumb-blurred-retina/2024/photo.jpg" in thumb
        assert all(p.startswith("thumb") for p in thumb)

        every = paths.enumerate_cache_paths("2024/photo.jpg")
        assert "icon/2024/photo.png" in every
        assert set(thumb) < set(every)


class TestPurge:
    """Removal of cached variants."""

    def _touch(self, path):
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, "wb") as fh:
            fh.write(b"x")

    def test_purge_removes_only_variants_of_file(self, delivery_config, tmp_path):
        paths = CachePathResolver(delivery_config, tmp_path / "orig", tmp_path / "cache")
        mine = paths.absolute_cache_path("a/photo.jpg", FormatKey("thumb", retina=True))
        other = paths.absolute_cache_path("a/other.jpg", FormatKey("thumb"))
        self._touch(mine)
        self._touch(other)

        removed = paths.purge_cached_variants("a/photo.jpg")
        assert removed == [mine]
        assert not os.path.exists(mine)
        assert os.path.exists(other)

    def test_dry_run_keeps_files(self, delivery_config, tmp_path):
        paths = CachePathResolver(delivery_config, tmp_path / "orig", tmp_path / "cache")
        target = paths.absolute_cache_path("photo.jpg", FormatKey("icon"))
        self._touch(target)

        assert paths.purge_cached_variants("photo.jpg", dry_run=True) == [target]
        assert os.path.exists(target)

    def test_format_filter(self, delivery_config, tmp_path):
        paths = CachePathResolver(delivery_config, tmp_path / "orig", tmp_path / "cache")
        thumb = paths.absolute_cache_path("photo.jpg", FormatKey("thumb"))
        icon = paths.absolute_cache_path("photo.jpg", FormatKey("icon"))
        self._touch(thumb)
        self._touch(icon)

        assert paths.purge_cached_variants("photo.jpg", format="icon") == [icon]
        assert os.path.exists(thumb)
