"""
Wiring of the delivery components and the Flask extension entry point.

Relative folders and fallback paths in the delivery configuration are
resolved under ``app.instance_path``, the same way the data folders are.
"""
from __future__ import annotations

import os
import time
from collections.abc import Callable
from dataclasses import replace
from types import MappingProxyType

import structlog
from flask import current_app

from .contracts import Resource, Video
from .delivery_config import DeliveryConfig, load_delivery_config
from .dispatch import RequestDispatcher
from .exceptions import DeliveryConfigError
from .formats import FormatResolver
from .generator import VariantGenerator, build_generator
from .security.signed_media import SignatureCodec
from .storage import CachePathResolver
from .urls import UrlBuilder
from .video import VideoDelivery

logger = structlog.get_logger(__name__)

EXTENSION_KEY = "media_delivery"


def resolve_path(path: str, base_dir: str) -> str:
    if os.path.isabs(path):
        return path
    return os.path.join(base_dir, path)


def resolve_overlays(config: DeliveryConfig, base_dir: str) -> DeliveryConfig:
    """Return ``config`` with overlay image paths made absolute."""
    overlays = {
        name: replace(overlay, file=resolve_path(overlay.file, base_dir))
        if isinstance(overlay.file, str)
        else overlay
        for name, overlay in config.overlays.items()
    }
    return replace(config, overlays=MappingProxyType(overlays))


class MediaDelivery:
    """All delivery services built from one frozen configuration."""

    def __init__(
        self,
        config: DeliveryConfig,
        base_dir: str | None = None,
        generator: VariantGenerator | None = None,
        clock: Callable[[], float] = time.time,
        resource_loader: Callable[[str], Resource | None] | None = None,
    ):
        base_dir = base_dir or os.getcwd()
        config = resolve_overlays(config, base_dir)
        folders = config.folders

        self.config = config
        self.resolver = FormatResolver(config)
        self.codec = SignatureCodec(config)
        self.paths = CachePathResolver(
            config,
            orig_dir=resolve_path(folders.orig, base_dir),
            cache_dir=resolve_path(folders.cache, base_dir),
        )
        self.generator = generator or build_generator(config.settings)
        self.urls = UrlBuilder(config, self.resolver, self.codec, clock)
        self.dispatcher = RequestDispatcher(
            config,
            self.paths,
            self.generator,
            fallbacks={k: resolve_path(v, base_dir) for k, v in config.fallbacks.items()},
            resolver=self.resolver,
            codec=self.codec,
            clock=clock,
            resource_loader=resource_loader,
        )
        self.video = VideoDelivery(
            config, resolve_path(folders.video, base_dir), self.codec, clock
        )

    def image_src(self, resource: Resource, *args, **kwargs) -> str:
        return self.urls.build_url(resource, *args, **kwargs)

    def video_src(self, video: Video, *args, **kwargs) -> str:
        return self.video.build_url(video, *args, **kwargs)


def init_delivery(app) -> MediaDelivery:
    """Load the delivery configuration once and attach the services to ``app``.

    ``MEDIA_DELIVERY`` (a mapping) wins over ``MEDIA_DELIVERY_CONFIG`` (a YAML
    path, relative paths resolved under the instance folder).
    """
    source = app.config.get("MEDIA_DELIVERY")
    if not source:
        path = app.config.get("MEDIA_DELIVERY_CONFIG")
        if not path:
            raise DeliveryConfigError(
                "Set MEDIA_DELIVERY or MEDIA_DELIVERY_CONFIG to configure delivery."
            )
        source = resolve_path(str(path), app.instance_path)

    config = load_delivery_config(source)
    delivery = MediaDelivery(
        config,
        base_dir=app.instance_path,
        generator=app.config.get("MEDIA_DELIVERY_GENERATOR"),
        resource_loader=app.config.get("MEDIA_DELIVERY_RESOURCE_LOADER"),
    )
    app.extensions[EXTENSION_KEY] = delivery

    logger.debug(
        "media_delivery_initialized",
        route=config.settings.route,
        video_route=config.settings.video_route,
        default_format=config.default_format,
        generator=type(delivery.generator).__name__,
    )
    return delivery


def current_delivery() -> MediaDelivery:
    return current_app.extensions[EXTENSION_KEY]
