"""
Signed delivery of original video files.

Videos are never derived: URLs always carry a signature and the dispatcher
serves the original file. The adjusted-format field of the signing context is
the constant ``"video"`` so video signatures can never be replayed against an
image route.
"""
from __future__ import annotations

import os
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from urllib.parse import urlencode

import structlog

from .contracts import Video
from .delivery_config import DeliveryConfig
from .exceptions import AccessDenied, AssetNotFound, InvalidRequest
from .security.signed_media import SignatureCodec, SigningContext, time_and_duration
from .storage import ensure_sep, is_safe_relative, normalize_folder_absolute
from .urls import build_path, resolve_client

logger = structlog.get_logger(__name__)

VIDEO_FORMAT = "video"


@dataclass(frozen=True)
class VideoOutcome:
    status: int
    path: str | None = None
    reason: str | None = None


class VideoDelivery:
    def __init__(
        self,
        config: DeliveryConfig,
        video_dir: str,
        codec: SignatureCodec | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.config = config
        self.video_dir = normalize_folder_absolute(video_dir)
        self.codec = codec or SignatureCodec(config)
        self.clock = clock

    def build_url(
        self,
        video: Video,
        valid_for: int | None = None,
        client_id: str | None = None,
        client_secret: bytes | str | None = None,
    ) -> str:
        client_to_use, secret = resolve_client(self.config, client_id, client_secret)
        duration = valid_for if valid_for is not None else self.config.settings.duration
        issued_at, duration = time_and_duration(duration, self.clock)
        file = ensure_sep(video.file)

        signature = self.codec.sign(
            SigningContext(
                file=file,
                resource_id=video.id,
                issued_at=issued_at,
                valid_for=duration,
                adjusted_format=VIDEO_FORMAT,
                client_id=client_to_use,
                client_secret=secret,
            )
        )
        url = build_path(self.config.settings.video_route, video.id, file)
        return url + "?" + urlencode(
            {"sig": signature, "ts": issued_at, "sec": duration, "client": client_to_use}
        )

    def _check(self, id: str | None, file: str | None, query: Mapping) -> str:
        if not id or not file or not is_safe_relative(file):
            raise InvalidRequest("ID or file is invalid.")
        missing = [k for k in ("ts", "sec", "client", "sig") if not query.get(k)]
        if missing:
            raise InvalidRequest(f"Query params missing: {', '.join(missing)}")
        try:
            issued_at, valid_for = int(query["ts"]), int(query["sec"])
        except (TypeError, ValueError) as e:
            raise InvalidRequest("Query params ts/sec must be integers.") from e

        client_id = str(query["client"])
        if not self.codec.has_client(client_id):
            raise AccessDenied("Client is missing.")
        ctx = SigningContext(
            file=ensure_sep(file),
            resource_id=id,
            issued_at=issued_at,
            valid_for=valid_for,
            adjusted_format=VIDEO_FORMAT,
            client_id=client_id,
            client_secret=self.codec.client_secret(client_id),
        )
        if not self.codec.verify(ctx, query.get("sig")):
            raise AccessDenied("Signature is invalid.")
        if self.codec.is_expired(issued_at, valid_for, self.clock()):
            raise AccessDenied("Timestamp is too old.")

        path = self.video_dir + ensure_sep(file)
        if not os.path.isfile(path):
            raise AssetNotFound(f'Video "{path}" can not be found.')
        return path

    def dispatch(self, id: str | None, file: str | None, query: Mapping | None = None) -> VideoOutcome:
        try:
            return VideoOutcome(200, self._check(id, file, query or {}))
        except (InvalidRequest, AccessDenied, AssetNotFound) as e:
            logger.info("video_rejected", status=e.status_code, reason=str(e), id=id)
            return VideoOutcome(e.status_code, reason=str(e))
