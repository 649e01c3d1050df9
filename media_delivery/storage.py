"""
Cache path helpers.

Layout:
    <cache>/<format><file suffix>/<original dir>/<original stem>.<jpg|png>

The cache nests the original directory structure under one folder per format
variant, e.g. ``thumb-retina/2024/05/photo.jpg`` for ``2024/05/photo.tif``.
Paths returned by ``CachePathResolver.cache_path`` are relative to the cache
folder and are used both to write and to look up cache entries, so they must
stay byte-identical for identical inputs.
"""
from __future__ import annotations

import os
import posixpath
import re

import structlog

from .delivery_config import DeliveryConfig
from .formats import FormatKey, file_suffix

logger = structlog.get_logger(__name__)

_MULTI_SEP = re.compile(r"/{2,}")


def ensure_sep(path: str | None, leading: bool = False, trailing: bool = False) -> str:
    """Normalize separators and force/strip the leading and trailing one."""
    p = str(path or "").replace("\\", "/")
    p = _MULTI_SEP.sub("/", p).strip("/")
    if not p:
        return "/" if (leading or trailing) else ""
    if leading:
        p = "/" + p
    if trailing:
        p = p + "/"
    return p


def normalize_folder_relative(path: str | None) -> str:
    # "a/b" -> "a/b/", "/a/b/" -> "a/b/", "" -> ""
    p = ensure_sep(path)
    return p + "/" if p else ""


def normalize_folder_absolute(path: str | os.PathLike) -> str:
    return ensure_sep(os.path.abspath(os.fspath(path)), leading=True, trailing=True)


def is_safe_relative(path: str | None) -> bool:
    """True when ``path`` stays inside the folder it is joined to."""
    p = ensure_sep(path)
    if not p:
        return False
    return ".." not in p.split("/")


class CachePathResolver:
    def __init__(self, config: DeliveryConfig, orig_dir: str, cache_dir: str):
        self.config = config
        self.orig_dir = normalize_folder_absolute(orig_dir)
        self.cache_dir = normalize_folder_absolute(cache_dir)

    def cache_folder(self, file: str, key: FormatKey) -> str:
        folder = ""
        variant = key.base + file_suffix(key, self.config.suffixes)
        if variant:
            folder += normalize_folder_relative(variant)
        dirname = posixpath.dirname(ensure_sep(file))
        if dirname and dirname != ".":
            folder += normalize_folder_relative(dirname)
        return folder

    def cache_filename(self, file: str, key: FormatKey) -> str:
        stem = posixpath.splitext(posixpath.basename(ensure_sep(file)))[0]
        fmt = self.config.format(key.base)
        if fmt is not None and fmt.type == "png":
            return stem + ".png"
        return stem + ".jpg"

    def cache_path(self, file: str, key: FormatKey) -> str:
        return self.cache_folder(file, key) + self.cache_filename(file, key)

    def absolute_cache_path(self, file: str, key: FormatKey) -> str:
        return self.cache_dir + self.cache_path(file, key)

    def original_path(self, file: str) -> str:
        return self.orig_dir + ensure_sep(file)

    def enumerate_cache_paths(self, file: str, format: str | None = None) -> list[str]:
        """Every cache path ``file`` can occupy, for all (or one) formats."""
        paths: dict[str, None] = {}
        for base in self.config.formats:
            if format is not None and format != base:
                continue
            for retina in (True, False):
                for blurred in (True, False):
                    for watermarked in (True, False):
                        key = FormatKey(base, retina, blurred, watermarked)
                        paths.setdefault(self.cache_path(file, key))
        return list(paths)

    def purge_cached_variants(
        self, file: str, format: str | None = None, dry_run: bool = False
    ) -> list[str]:
        """Delete the cached variants of ``file``; returns the removed paths."""
        removed = []
        for rel in self.enumerate_cache_paths(file, format):
            path = self.cache_dir + rel
            if not os.path.isfile(path):
                continue
            if not dry_run:
                try:
                    os.remove(path)
                except FileNotFoundError:
                    continue
            removed.append(path)
        logger.info(
            "cache_variants_purged",
            file=file,
            format=format,
            count=len(removed),
            dry_run=dry_run,
        )
        return removed
