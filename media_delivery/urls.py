"""Outbound URL building for image variants."""
from __future__ import annotations

import time
from collections.abc import Callable
from urllib.parse import quote, urlencode

import structlog

from .contracts import Actor, Resource
from .delivery_config import DeliveryConfig
from .exceptions import UnknownClient, UnknownFormat
from .formats import FormatResolver
from .security.signed_media import SignatureCodec, SigningContext, time_and_duration
from .storage import ensure_sep

logger = structlog.get_logger(__name__)


def resolve_client(
    config: DeliveryConfig, client_id: str | None, client_secret: bytes | str | None
) -> tuple[str, bytes | str]:
    """Return ``(client_id, secret)``; explicit values win over the configured default."""
    client_to_use = client_id if client_id is not None else config.default_client
    if client_to_use is None:
        raise UnknownClient(None)

    secret_to_use = client_secret
    if secret_to_use is None:
        client = config.clients.get(client_to_use)
        if client is None:
            raise UnknownClient(client_to_use)
        secret_to_use = client.secret
    return client_to_use, secret_to_use


def build_path(route: str, *segments) -> str:
    parts = [quote(str(s), safe="/@-_.~") for s in segments]
    return "/".join([route.rstrip("/")] + parts)


class UrlBuilder:
    def __init__(
        self,
        config: DeliveryConfig,
        resolver: FormatResolver | None = None,
        codec: SignatureCodec | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.config = config
        self.resolver = resolver or FormatResolver(config)
        self.codec = codec or SignatureCodec(config)
        self.clock = clock

    def build_url(
        self,
        resource: Resource,
        actor: Actor | None = None,
        format: str | None = None,
        retina: bool = False,
        blurred: bool | None = None,
        watermarked: bool | None = None,
        valid_for: int | None = None,
        client_id: str | None = None,
        client_secret: bytes | str | None = None,
    ) -> str:
        """Return a signed URL for ``resource`` in the requested format.

        Args:
            resource: image to deliver (see contracts.Resource)
            actor: policy subject handed to the blur/watermark hooks
            format: base format name (default: the configured default format)
            retina: request the retina variant
            blurred/watermarked: force a modifier on or off; None asks the
                resource policy for blur/watermark-capable formats
            valid_for: seconds until expiry (default: settings.duration)
            client_id/client_secret: sign for a specific client

        Raises:
            UnknownClient: no client could be resolved or it has no secret
            UnknownFormat: the format is not configured
        """
        client_to_use, secret = resolve_client(self.config, client_id, client_secret)

        base = format if format is not None else self.resolver.default_format
        fmt = self.config.format(base)
        if fmt is None:
            raise UnknownFormat(base)

        key = self.resolver.create_key(
            base, resource, actor, retina=retina, blurred=blurred, watermarked=watermarked
        )
        adjusted = self.resolver.encode(key)

        duration = valid_for if valid_for is not None else self.config.settings.duration
        issued_at, duration = time_and_duration(duration, self.clock)

        file = ensure_sep(resource.file)
        signature = self.codec.sign(
            SigningContext(
                file=file,
                resource_id=resource.id,
                issued_at=issued_at,
                valid_for=duration,
                adjusted_format=adjusted,
                client_id=client_to_use,
                client_secret=secret,
            )
        )

        url = build_path(self.config.settings.route, adjusted, resource.id, file)
        if fmt.restricted:
            url += "?" + urlencode(
                {"sig": signature, "ts": issued_at, "sec": duration, "client": client_to_use}
            )
        return url

    def build_url_simple(
        self,
        resource: Resource,
        format: str | None = None,
        valid_for: int | None = None,
        client_id: str | None = None,
        client_secret: bytes | str | None = None,
    ) -> str:
        return self.build_url(
            resource,
            None,
            format,
            False,
            None,
            None,
            valid_for,
            client_id,
            client_secret,
        )
