"""
Variant generators.

A generator renders one cached variant from an original image:

    generator.generate(path_orig, path_cache, settings)

``settings`` is the dict built by ``FormatResolver.format_settings``: the
format's rendering options (width, height, mode, quality), an optional clip
region or focal point, and the generation arguments (retina, blur, overlay,
overlay_gravity, overlay_scale).

Two implementations are provided:
- PillowGenerator renders in-process with Pillow.
- SubprocessGenerator runs ``python -m media_delivery.generator`` (or a
  configured command) with a timeout, so slow or crashing renders cannot take
  the web process down with them.

Both write to a temporary file next to the target and move it into place, so
a half-written cache file is never visible.

Usage:
    python -m media_delivery.generator orig.jpg cache/thumb/orig.jpg \
        --settings '{"width": 200, "height": 200, "type": "jpg"}'
"""
from __future__ import annotations

import argparse
import json
import os
import subprocess
import sys
import tempfile
import uuid
from collections.abc import Mapping, Sequence
from typing import Any, Protocol

import structlog
from PIL import Image, ImageFilter, ImageOps, UnidentifiedImageError

from media_delivery.exceptions import GenerationFailure, GenerationTimeout

logger = structlog.get_logger(__name__)

# ImageMagick-style gravity names -> relative anchor (x, y)
GRAVITY_ANCHORS = {
    "northwest": (0.0, 0.0),
    "north": (0.5, 0.0),
    "northeast": (1.0, 0.0),
    "west": (0.0, 0.5),
    "center": (0.5, 0.5),
    "east": (1.0, 0.5),
    "southwest": (0.0, 1.0),
    "south": (0.5, 1.0),
    "southeast": (1.0, 1.0),
}

_MEMORY_UNITS = {"k": 1024, "m": 1024**2, "g": 1024**3}

# Partial output is written to "<folder>/<prefix><random><ext>" before the move
TEMP_PREFIX = ".gen-"


class VariantGenerator(Protocol):
    def generate(self, path_orig: str, path_cache: str, settings: Mapping[str, Any]) -> None: ...


def parse_memory_limit(value: str | int | None) -> int | None:
    """Parse a PHP-style memory limit (``512M``, ``1G``, ``-1``) into bytes."""
    if value is None:
        return None
    s = str(value).strip().lower()
    if not s or s == "-1":
        return None
    unit = _MEMORY_UNITS.get(s[-1])
    try:
        if unit:
            return int(float(s[:-1]) * unit)
        return int(s)
    except ValueError:
        return None


def _int_or_none(value: Any) -> int | None:
    try:
        return int(value) if value not in (None, "", False) else None
    except (TypeError, ValueError):
        return None


def _focal_centering(focal: Any) -> tuple[float, float]:
    if isinstance(focal, Mapping):
        x, y = focal.get("x", 0.5), focal.get("y", 0.5)
    elif isinstance(focal, Sequence) and len(focal) >= 2:
        x, y = focal[0], focal[1]
    else:
        return (0.5, 0.5)
    return (min(max(float(x), 0.0), 1.0), min(max(float(y), 0.0), 1.0))


def _clip_box(clip: Any) -> tuple[int, int, int, int] | None:
    # Clip regions are pixel rectangles: {x, y, width, height}
    if isinstance(clip, Mapping):
        try:
            x, y = int(clip["x"]), int(clip["y"])
            return (x, y, x + int(clip["width"]), y + int(clip["height"]))
        except (KeyError, TypeError, ValueError):
            return None
    if isinstance(clip, Sequence) and len(clip) == 4:
        x, y, w, h = (int(v) for v in clip)
        return (x, y, x + w, y + h)
    return None


def _atomic_save(
    img: Image.Image, path_cache: str, file_type: str, quality: int, temp_prefix: str = TEMP_PREFIX
) -> None:
    folder = os.path.dirname(path_cache) or "."
    os.makedirs(folder, exist_ok=True)
    suffix = ".png" if file_type == "png" else ".jpg"
    fd, tmp_path = tempfile.mkstemp(prefix=temp_prefix, suffix=suffix, dir=folder)
    try:
        with os.fdopen(fd, "wb") as fh:
            if file_type == "png":
                img.save(fh, format="PNG", optimize=True)
            else:
                if img.mode not in ("RGB", "L"):
                    img = img.convert("RGB")
                img.save(fh, format="JPEG", quality=quality, optimize=True)
        os.replace(tmp_path, path_cache)
    except BaseException:
        try:
            os.remove(tmp_path)
        except OSError:
            pass
        raise


class PillowGenerator:
    """Resize, crop, blur and overlay with Pillow inside the current process."""

    def __init__(self, default_quality: int = 85, temp_prefix: str = TEMP_PREFIX):
        self.default_quality = default_quality
        self.temp_prefix = temp_prefix

    def _resize(self, img: Image.Image, settings: Mapping[str, Any]) -> Image.Image:
        factor = 2 if int(settings.get("retina") or 0) else 1
        width = _int_or_none(settings.get("width"))
        height = _int_or_none(settings.get("height"))
        if width:
            width *= factor
        if height:
            height *= factor

        mode = str(settings.get("mode") or ("crop" if width and height else "fit"))
        if width and height and mode == "crop":
            centering = _focal_centering(settings.get("focal"))
            return ImageOps.fit(
                img, (width, height), Image.Resampling.LANCZOS, centering=centering
            )
        if width or height:
            bound = (width or img.width, height or img.height)
            img = img.copy()
            img.thumbnail(bound, Image.Resampling.LANCZOS)
        return img

    def _overlay(self, img: Image.Image, settings: Mapping[str, Any]) -> Image.Image:
        overlay_file = settings.get("overlay")
        if not overlay_file:
            return img
        with Image.open(str(overlay_file)) as src:
            overlay = src.convert("RGBA")

        scale = settings.get("overlay_scale")
        if scale:
            target_w = max(1, int(img.width * float(scale)))
            target_h = max(1, int(overlay.height * target_w / overlay.width))
            overlay = overlay.resize((target_w, target_h), Image.Resampling.LANCZOS)

        gravity = str(settings.get("overlay_gravity") or "center").lower()
        ax, ay = GRAVITY_ANCHORS.get(gravity, GRAVITY_ANCHORS["center"])
        pos = (int((img.width - overlay.width) * ax), int((img.height - overlay.height) * ay))

        base = img.convert("RGBA")
        base.alpha_composite(overlay, dest=(max(pos[0], 0), max(pos[1], 0)))
        return base

    def generate(self, path_orig: str, path_cache: str, settings: Mapping[str, Any]) -> None:
        try:
            with Image.open(path_orig) as src:
                img = ImageOps.exif_transpose(src)
                img.load()

            box = _clip_box(settings.get("clip"))
            if box:
                img = img.crop(box)
            img = self._resize(img, settings)

            blur = settings.get("blur") or 0
            if float(blur) > 0:
                img = img.filter(ImageFilter.GaussianBlur(radius=float(blur)))

            img = self._overlay(img, settings)

            file_type = str(settings.get("type") or "jpg")
            quality = _int_or_none(settings.get("quality")) or self.default_quality
            _atomic_save(img, path_cache, file_type, quality, self.temp_prefix)
        except (
            OSError,
            UnidentifiedImageError,
            Image.DecompressionBombError,
            ValueError,
        ) as e:
            raise GenerationFailure(f"Cannot render {path_orig}: {e}", path_cache) from e

        logger.info(
            "variant_generated",
            path_orig=path_orig,
            path_cache=path_cache,
            format=settings.get("format"),
            size=img.size,
        )


def apply_memory_limit(limit: int | None) -> None:
    """Cap the address space of the current process (POSIX only)."""
    if not limit or os.name != "posix":
        return
    import resource

    resource.setrlimit(resource.RLIMIT_AS, (limit, limit))


def remove_partial_output(folder: str, prefix: str) -> list[str]:
    """Delete temp files a killed generator left behind in ``folder``."""
    removed = []
    try:
        names = os.listdir(folder)
    except OSError:
        return removed
    for name in names:
        if not name.startswith(prefix):
            continue
        path = os.path.join(folder, name)
        try:
            os.remove(path)
        except OSError as e:
            logger.warning("partial_output_not_removed", path=path, error=str(e))
            continue
        removed.append(path)
    return removed


class SubprocessGenerator:
    """Run the generator command in a child process with a timeout.

    The child applies ``memory_limit`` to itself (``--memory-limit``), so
    nothing runs between fork and exec in the threaded web process.
    """

    def __init__(
        self,
        command: Sequence[str] | None = None,
        timeout: float | None = 30.0,
        memory_limit: str | int | None = None,
    ):
        self.command = list(command or [sys.executable, "-m", "media_delivery.generator"])
        self.timeout = timeout
        self.memory_limit = parse_memory_limit(memory_limit)

    def build_args(
        self,
        path_orig: str,
        path_cache: str,
        settings: Mapping[str, Any],
        temp_prefix: str = TEMP_PREFIX,
    ) -> list[str]:
        args = self.command + [
            path_orig,
            path_cache,
            "--settings",
            json.dumps(dict(settings), default=str, sort_keys=True),
            "--temp-prefix",
            temp_prefix,
        ]
        if self.memory_limit:
            args += ["--memory-limit", str(self.memory_limit)]
        return args

    def generate(self, path_orig: str, path_cache: str, settings: Mapping[str, Any]) -> None:
        # Unique per run so a timeout only cleans up after its own child
        temp_prefix = f"{TEMP_PREFIX}{uuid.uuid4().hex[:12]}-"
        args = self.build_args(path_orig, path_cache, settings, temp_prefix)
        try:
            res = subprocess.run(
                args,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired as e:
            # run() has already killed and reaped the child
            removed = remove_partial_output(os.path.dirname(path_cache) or ".", temp_prefix)
            if removed:
                logger.info("partial_output_removed", path_cache=path_cache, count=len(removed))
            raise GenerationTimeout(
                f"Generator timed out after {self.timeout}s for {path_cache}", path_cache
            ) from e
        except OSError as e:
            raise GenerationFailure(f"Cannot start generator: {e}", path_cache) from e

        if res.returncode != 0:
            tail = (res.stdout or "").strip()[-500:]
            raise GenerationFailure(
                f"Generator exited with {res.returncode} for {path_cache}: {tail}",
                path_cache,
            )


def build_generator(settings) -> VariantGenerator:
    """Pick the generator named by ``DeliverySettings.generator``."""
    if settings.generator == "local":
        return PillowGenerator()
    return SubprocessGenerator(
        timeout=settings.generator_timeout, memory_limit=settings.memory_limit
    )


def main(argv: Sequence[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="python -m media_delivery.generator",
        description="Render one cached image variant.",
    )
    parser.add_argument("path_orig", help="Original image")
    parser.add_argument("path_cache", help="Target cache file")
    parser.add_argument(
        "--settings",
        default="{}",
        help="JSON object with format settings and generation arguments",
    )
    parser.add_argument(
        "--memory-limit",
        type=int,
        default=None,
        help="Address space limit for this process, in bytes",
    )
    parser.add_argument(
        "--temp-prefix",
        default=TEMP_PREFIX,
        help="Filename prefix for partial output next to the target",
    )
    args = parser.parse_args(argv)

    apply_memory_limit(args.memory_limit)

    try:
        settings = json.loads(args.settings)
    except json.JSONDecodeError as e:
        parser.error(f"--settings is not valid JSON: {e}")
    if not isinstance(settings, dict):
        parser.error("--settings must be a JSON object")

    try:
        PillowGenerator(temp_prefix=args.temp_prefix).generate(
            args.path_orig, args.path_cache, settings
        )
    except GenerationFailure as e:
        print(f"[error] {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
