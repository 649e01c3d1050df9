"""
Image formats and their modifiers.

A requested variant is described by a ``FormatKey``: the configured base
format plus the retina / blurred / watermarked modifiers. The key is encoded
into the public "adjusted format" string used in URLs and signatures, and
into a folder suffix used for cache paths. Both encodings put the
blur/watermark suffix before the retina suffix; blurred wins over
watermarked.
"""
from __future__ import annotations

from dataclasses import asdict, dataclass, replace
from typing import Any

from .contracts import Actor, Resource
from .delivery_config import DeliveryConfig, SuffixConfig


@dataclass(frozen=True)
class FormatKey:
    base: str
    retina: bool = False
    blurred: bool = False
    watermarked: bool = False

    def with_modifiers(self, **changes) -> FormatKey:
        return replace(self, **changes)


@dataclass(frozen=True)
class GenerationArguments:
    """Rendering parameters derived from a format key and the overlay config."""

    format: str
    retina: int = 0
    blur: float = 0
    overlay: str | bool = False
    overlay_gravity: str | bool = False
    overlay_scale: float | bool = False

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


def _modifier_suffix(key: FormatKey, suffixes: SuffixConfig, attr: str) -> str:
    value = ""
    if key.blurred:
        value += getattr(suffixes.blurred, attr)
    elif key.watermarked:
        value += getattr(suffixes.watermarked, attr)
    if key.retina:
        value += getattr(suffixes.retina, attr)
    return value


def encode_adjusted(key: FormatKey, suffixes: SuffixConfig) -> str:
    """Return the public format string, e.g. ``thumb-blurred-retina``."""
    return key.base + _modifier_suffix(key, suffixes, "format")


def file_suffix(key: FormatKey, suffixes: SuffixConfig) -> str:
    """Return the suffix appended to the base format for the cache folder."""
    return _modifier_suffix(key, suffixes, "file")


def decode_adjusted(adjusted: str, suffixes: SuffixConfig) -> FormatKey:
    """Parse an adjusted format string back into a FormatKey.

    Suffixes are stripped in reverse encoding order (retina, blurred,
    watermarked), each at most once. Decoding is best-effort: the base is not
    checked against the configured formats.
    """
    base = adjusted or ""
    flags = {}
    for modifier in ("retina", "blurred", "watermarked"):
        suffix = getattr(suffixes, modifier).format
        matched = bool(suffix) and base.endswith(suffix)
        if matched:
            base = base[: -len(suffix)]
        flags[modifier] = matched
    return FormatKey(base, **flags)


class FormatResolver:
    """Resolves defaults and policy-driven modifiers against the configuration."""

    def __init__(self, config: DeliveryConfig):
        self.config = config

    @property
    def default_format(self) -> str:
        return self.config.default_format

    def is_known(self, base: str) -> bool:
        return base in self.config.formats

    def is_restricted(self, base: str) -> bool:
        fmt = self.config.format(base)
        return bool(fmt and fmt.restricted)

    def resolve_blurred(
        self,
        key: FormatKey,
        override: bool | None,
        resource: Resource,
        actor: Actor | None = None,
    ) -> bool:
        if override is not None:
            return bool(override)
        if key.base in self.config.blur_capable:
            return bool(resource.use_blurred_format(actor))
        return False

    def resolve_watermarked(
        self,
        key: FormatKey,
        override: bool | None,
        resource: Resource,
        actor: Actor | None = None,
    ) -> bool:
        if override is not None:
            return bool(override)
        if key.base in self.config.watermark_capable:
            return bool(resource.use_watermarked_format(actor))
        return False

    def create_key(
        self,
        base: str,
        resource: Resource,
        actor: Actor | None = None,
        retina: bool = False,
        blurred: bool | None = None,
        watermarked: bool | None = None,
    ) -> FormatKey:
        key = FormatKey(base, retina=bool(retina))
        return key.with_modifiers(
            blurred=self.resolve_blurred(key, blurred, resource, actor),
            watermarked=self.resolve_watermarked(key, watermarked, resource, actor),
        )

    def decode(self, adjusted: str) -> FormatKey:
        return decode_adjusted(adjusted, self.config.suffixes)

    def encode(self, key: FormatKey) -> str:
        return encode_adjusted(key, self.config.suffixes)

    def generation_arguments(self, key: FormatKey) -> GenerationArguments:
        if key.blurred:
            overlay = self.config.overlay("blurred")
        elif key.watermarked:
            overlay = self.config.overlay("watermarked")
        else:
            return GenerationArguments(format=key.base, retina=int(key.retina))

        return GenerationArguments(
            format=key.base,
            retina=int(key.retina),
            blur=overlay.blur,
            overlay=overlay.file,
            overlay_gravity=overlay.gravity,
            overlay_scale=overlay.scale,
        )

    def format_settings(
        self, key: FormatKey, resource: Resource | None = None
    ) -> dict[str, Any]:
        """Everything the generator needs to render ``key``.

        Starts from the configured rendering options of the base format, adds a
        clipping region (or, failing that, a focal point) from the resource and
        finally the generation arguments.
        """
        arguments = self.generation_arguments(key)
        fmt = self.config.format(key.base)

        settings: dict[str, Any] = dict(fmt.options) if fmt else {}
        settings["type"] = fmt.type if fmt else "jpg"
        if resource is not None:
            if resource.has_clipping(key.base):
                settings["clip"] = resource.get_clipping(key.base)
            elif resource.has_focal_point():
                settings["focal"] = resource.get_focal_point()

        settings.update(arguments.as_dict())
        return settings
