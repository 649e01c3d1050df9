"""
Delivery policy configuration.

The configuration is loaded once per application (from a YAML file or from a
mapping placed in ``app.config["MEDIA_DELIVERY"]``), validated and frozen.
Values derived from it (default format, default client, blur- and
watermark-capable formats) are computed eagerly while loading so request
handlers only ever read immutable data.

Expected shape::

    settings:   {route, video_route, duration, memory_limit, generator, generator_timeout}
    clients:    {<id>: {secret, default}}
    formats:    {<name>: {default, restricted, blurred, watermarked, type, ...options}}
    suffixes:   {retina|blurred|watermarked: {format, file}}
    overlays:   {blurred|watermarked: {blur, file, gravity, scale}}
    folders:    {orig, cache, video}
    fallbacks:  {"403": path, "404": path, "412": path}
"""
from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any

import structlog
import yaml

from .exceptions import DeliveryConfigError

logger = structlog.get_logger(__name__)

# Used when no format is flagged as default
FALLBACK_FORMAT = "thumb"

FILE_TYPES = ("jpg", "png")
MODIFIERS = ("retina", "blurred", "watermarked")
FALLBACK_STATUSES = ("403", "404", "412")

# Keys of a format entry that describe policy rather than rendering
_FORMAT_POLICY_KEYS = {"default", "restricted", "blurred", "watermarked", "type"}


@dataclass(frozen=True)
class ClientCredential:
    id: str
    secret: bytes
    default: bool = False


@dataclass(frozen=True)
class FormatConfig:
    name: str
    restricted: bool = False
    default: bool = False
    blurred: bool = False
    watermarked: bool = False
    type: str = "jpg"
    # Rendering options handed to the generator (width, height, mode, quality, ...)
    options: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))


@dataclass(frozen=True)
class Suffix:
    format: str
    file: str


@dataclass(frozen=True)
class SuffixConfig:
    retina: Suffix = Suffix("-retina", "-retina")
    blurred: Suffix = Suffix("-blurred", "-blurred")
    watermarked: Suffix = Suffix("-watermarked", "-watermarked")


@dataclass(frozen=True)
class OverlayConfig:
    blur: float = 0
    file: str | bool = False
    gravity: str | bool = False
    scale: float | bool = False


@dataclass(frozen=True)
class Folders:
    orig: str
    cache: str
    video: str


@dataclass(frozen=True)
class DeliverySettings:
    route: str = "/media/image"
    video_route: str = "/media/video"
    duration: int = 3600
    memory_limit: str | None = None
    generator: str = "subprocess"
    generator_timeout: float = 30.0


@dataclass(frozen=True)
class DeliveryConfig:
    settings: DeliverySettings
    clients: Mapping[str, ClientCredential]
    formats: Mapping[str, FormatConfig]
    suffixes: SuffixConfig
    overlays: Mapping[str, OverlayConfig]
    folders: Folders
    fallbacks: Mapping[str, str]

    default_format: str = field(init=False)
    default_client: str | None = field(init=False)
    blur_capable: tuple[str, ...] = field(init=False)
    watermark_capable: tuple[str, ...] = field(init=False)

    def __post_init__(self):
        default_format = FALLBACK_FORMAT
        for name, fmt in self.formats.items():
            if fmt.default:
                default_format = name
                break

        # Last client flagged as default wins
        default_client = None
        for client_id, client in self.clients.items():
            if client.default:
                default_client = client_id

        object.__setattr__(self, "default_format", default_format)
        object.__setattr__(self, "default_client", default_client)
        object.__setattr__(
            self,
            "blur_capable",
            tuple(name for name, fmt in self.formats.items() if fmt.blurred),
        )
        object.__setattr__(
            self,
            "watermark_capable",
            tuple(name for name, fmt in self.formats.items() if fmt.watermarked),
        )

    def format(self, name: str) -> FormatConfig | None:
        return self.formats.get(name)

    def overlay(self, name: str) -> OverlayConfig:
        return self.overlays.get(name) or OverlayConfig()


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return bool(value)


def _section(data: Mapping[str, Any], key: str, required: bool = False) -> dict:
    value = data.get(key)
    if value is None:
        if required:
            raise DeliveryConfigError(f'Missing configuration section "{key}".')
        return {}
    if not isinstance(value, Mapping):
        raise DeliveryConfigError(f'Configuration section "{key}" must be a mapping.')
    return dict(value)


def _parse_settings(raw: dict) -> DeliverySettings:
    defaults = DeliverySettings()
    generator = str(raw.get("generator", defaults.generator))
    if generator not in {"subprocess", "local"}:
        raise DeliveryConfigError(
            f'Unknown generator "{generator}" (expected "subprocess" or "local").'
        )
    try:
        duration = int(raw.get("duration", defaults.duration))
        timeout = float(raw.get("generator_timeout", defaults.generator_timeout))
    except (TypeError, ValueError) as e:
        raise DeliveryConfigError(f"Invalid numeric setting: {e}") from e
    memory_limit = raw.get("memory_limit")
    return DeliverySettings(
        route="/" + str(raw.get("route", defaults.route)).strip("/"),
        video_route="/" + str(raw.get("video_route", defaults.video_route)).strip("/"),
        duration=duration,
        memory_limit=str(memory_limit) if memory_limit is not None else None,
        generator=generator,
        generator_timeout=timeout,
    )


def _parse_clients(raw: dict) -> dict[str, ClientCredential]:
    clients = {}
    for client_id, entry in raw.items():
        entry = entry or {}
        secret = entry.get("secret")
        if not secret:
            raise DeliveryConfigError(f'Client "{client_id}" has no secret.')
        if isinstance(secret, str):
            secret = secret.encode("utf-8")
        clients[str(client_id)] = ClientCredential(
            id=str(client_id),
            secret=bytes(secret),
            default=_as_bool(entry.get("default", False)),
        )
    return clients


def _parse_formats(raw: dict) -> dict[str, FormatConfig]:
    if not raw:
        raise DeliveryConfigError("At least one format must be configured.")
    formats = {}
    for name, entry in raw.items():
        entry = dict(entry or {})
        file_type = str(entry.get("type", "jpg")).lower()
        if file_type not in FILE_TYPES:
            raise DeliveryConfigError(
                f'Format "{name}" has unsupported type "{file_type}".'
            )
        options = {k: v for k, v in entry.items() if k not in _FORMAT_POLICY_KEYS}
        formats[str(name)] = FormatConfig(
            name=str(name),
            restricted=_as_bool(entry.get("restricted", False)),
            default=_as_bool(entry.get("default", False)),
            blurred=_as_bool(entry.get("blurred", False)),
            watermarked=_as_bool(entry.get("watermarked", False)),
            type=file_type,
            options=MappingProxyType(options),
        )
    if sum(1 for fmt in formats.values() if fmt.default) > 1:
        logger.warning(
            "multiple_default_formats",
            formats=[n for n, f in formats.items() if f.default],
        )
    return formats


def _parse_suffixes(raw: dict) -> SuffixConfig:
    defaults = SuffixConfig()
    parsed = {}
    for modifier in MODIFIERS:
        fallback: Suffix = getattr(defaults, modifier)
        entry = raw.get(modifier) or {}
        if not isinstance(entry, Mapping):
            raise DeliveryConfigError(f'Suffix "{modifier}" must be a mapping.')
        parsed[modifier] = Suffix(
            format=str(entry.get("format", fallback.format)),
            file=str(entry.get("file", fallback.file)),
        )
    url_suffixes = [s.format for s in parsed.values()]
    if any(not s for s in url_suffixes) or len(set(url_suffixes)) != len(url_suffixes):
        raise DeliveryConfigError("Format suffixes must be non-empty and distinct.")
    return SuffixConfig(**parsed)


def _parse_overlays(raw: dict) -> dict[str, OverlayConfig]:
    overlays = {}
    for name in ("blurred", "watermarked"):
        entry = raw.get(name) or {}
        overlays[name] = OverlayConfig(
            blur=entry.get("blur", 0) or 0,
            file=entry.get("file") or False,
            gravity=entry.get("gravity") or False,
            scale=entry.get("scale") or False,
        )
    return overlays


def _parse_folders(raw: dict) -> Folders:
    for key in ("orig", "cache"):
        if not raw.get(key):
            raise DeliveryConfigError(f'Folder "{key}" is not configured.')
    return Folders(
        orig=str(raw["orig"]),
        cache=str(raw["cache"]),
        video=str(raw.get("video") or raw["orig"]),
    )


def _parse_fallbacks(raw: dict) -> dict[str, str]:
    fallbacks = {str(k): str(v) for k, v in raw.items()}
    missing = [status for status in FALLBACK_STATUSES if not fallbacks.get(status)]
    if missing:
        raise DeliveryConfigError(f"Missing fallback images for: {', '.join(missing)}")
    return fallbacks


def build_delivery_config(data: Mapping[str, Any]) -> DeliveryConfig:
    """Validate a raw configuration mapping and return a frozen DeliveryConfig."""
    if not isinstance(data, Mapping):
        raise DeliveryConfigError("Delivery configuration must be a mapping.")
    # Accept files that nest everything under a single top-level key
    if "media_delivery" in data and isinstance(data["media_delivery"], Mapping):
        data = data["media_delivery"]

    return DeliveryConfig(
        settings=_parse_settings(_section(data, "settings")),
        clients=MappingProxyType(_parse_clients(_section(data, "clients"))),
        formats=MappingProxyType(_parse_formats(_section(data, "formats", True))),
        suffixes=_parse_suffixes(_section(data, "suffixes")),
        overlays=MappingProxyType(_parse_overlays(_section(data, "overlays"))),
        folders=_parse_folders(_section(data, "folders", True)),
        fallbacks=MappingProxyType(_parse_fallbacks(_section(data, "fallbacks", True))),
    )


def load_delivery_config(source: str | os.PathLike | Mapping[str, Any]) -> DeliveryConfig:
    """Load the delivery configuration from a YAML file path or a mapping."""
    if isinstance(source, Mapping):
        return build_delivery_config(source)

    path = Path(source)
    try:
        with path.open("r", encoding="utf-8") as fh:
            data = yaml.safe_load(fh) or {}
    except FileNotFoundError as e:
        raise DeliveryConfigError(f"Delivery configuration not found: {path}") from e
    except yaml.YAMLError as e:
        raise DeliveryConfigError(f"Invalid YAML in {path}: {e}") from e

    config = build_delivery_config(data)
    logger.debug(
        "delivery_config_loaded",
        path=str(path),
        formats=list(config.formats),
        clients=list(config.clients),
    )
    return config
