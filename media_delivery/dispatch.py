"""
Inbound request dispatch for image variants.

A request moves through three checks, each of which can short-circuit into a
fallback image:

    validate  -> 412  (missing/malformed route or query params, unknown format)
    access    -> 403  (restricted formats: unknown client, bad signature, expired)
    locate    -> 404  (original file missing)
    otherwise -> 200

Every outcome names an original and a cache path. ``generate_and_serve``
renders the cache file on a miss (serialized per cache path) and hands it to
the file server together with the status code. Request-shape problems never
raise; only misconfiguration and generator failures do.
"""
from __future__ import annotations

import os
import posixpath
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any, TypeVar

import structlog

from .contracts import Resource
from .delivery_config import DeliveryConfig
from .exceptions import AccessDenied, AssetNotFound, GenerationFailure, InvalidRequest
from .formats import FormatKey, FormatResolver, GenerationArguments
from .generator import VariantGenerator
from .locking import KeyedLock
from .security.signed_media import SignatureCodec, SigningContext
from .storage import CachePathResolver, ensure_sep, is_safe_relative

logger = structlog.get_logger(__name__)

R = TypeVar("R")

QUERY_KEYS = ("ts", "sec", "client", "sig")


@dataclass(frozen=True)
class DispatchOutcome:
    status: int
    path_orig: str
    path_cache: str
    key: FormatKey
    arguments: GenerationArguments
    settings: Mapping[str, Any] = field(default_factory=dict)
    resource_id: str | None = None
    reason: str | None = None


def _present(value: Any) -> bool:
    return value is not None and str(value) != ""


class RequestDispatcher:
    def __init__(
        self,
        config: DeliveryConfig,
        paths: CachePathResolver,
        generator: VariantGenerator,
        fallbacks: Mapping[str, str] | None = None,
        resolver: FormatResolver | None = None,
        codec: SignatureCodec | None = None,
        clock: Callable[[], float] = time.time,
        resource_loader: Callable[[str], Resource | None] | None = None,
        locks: KeyedLock | None = None,
    ):
        self.config = config
        self.paths = paths
        self.generator = generator
        self.fallbacks = dict(fallbacks if fallbacks is not None else config.fallbacks)
        self.resolver = resolver or FormatResolver(config)
        self.codec = codec or SignatureCodec(config)
        self.clock = clock
        self.resource_loader = resource_loader
        self.locks = locks or KeyedLock()

    # -- checks ---------------------------------------------------------------

    def validate(self, format: str | None, id: str | None, file: str | None, query: Mapping) -> FormatKey:
        errors = []
        if not _present(format):
            errors.append("Format is empty.")
        if not _present(id):
            errors.append("ID is empty.")
        if not _present(file):
            errors.append("File is empty.")
        elif not is_safe_relative(file):
            errors.append("File path is invalid.")

        key = self.resolver.decode(format or "")
        if not self.resolver.is_known(key.base):
            errors.append("Format is invalid.")
        elif self.resolver.is_restricted(key.base):
            for name in QUERY_KEYS:
                if not _present(query.get(name)):
                    errors.append(f'Query param "{name}" is missing.')
            for name in ("ts", "sec"):
                if _present(query.get(name)):
                    try:
                        int(query[name])
                    except (TypeError, ValueError):
                        errors.append(f'Query param "{name}" is not an integer.')

        if errors:
            raise InvalidRequest(" ".join(errors))
        return key

    def check_access(self, key: FormatKey, format: str, id: str, file: str, query: Mapping) -> None:
        if not self.resolver.is_restricted(key.base):
            return

        client_id = str(query["client"])
        if not self.codec.has_client(client_id):
            raise AccessDenied("Client is missing.")

        issued_at, valid_for = int(query["ts"]), int(query["sec"])
        ctx = SigningContext(
            file=ensure_sep(file),
            resource_id=id,
            issued_at=issued_at,
            valid_for=valid_for,
            adjusted_format=format,
            client_id=client_id,
            client_secret=self.codec.client_secret(client_id),
        )
        if not self.codec.verify(ctx, query.get("sig")):
            raise AccessDenied("Signature is invalid.")
        if self.codec.is_expired(issued_at, valid_for, self.clock()):
            raise AccessDenied("Timestamp is too old.")

    def locate(self, key: FormatKey, id: str, file: str) -> DispatchOutcome:
        path_orig = self.paths.original_path(file)
        if not os.path.isfile(path_orig):
            raise AssetNotFound(f'Orig file "{path_orig}" can not be found.')

        resource = self.resource_loader(id) if self.resource_loader else None
        return DispatchOutcome(
            status=200,
            path_orig=path_orig,
            path_cache=self.paths.absolute_cache_path(file, key),
            key=key,
            arguments=self.resolver.generation_arguments(key),
            settings=self.resolver.format_settings(key, resource),
            resource_id=str(id),
        )

    # -- dispatch -------------------------------------------------------------

    def fallback(self, status: int, key: FormatKey, reason: str | None = None) -> DispatchOutcome:
        path_orig = self.fallbacks[str(status)]
        return DispatchOutcome(
            status=status,
            path_orig=path_orig,
            path_cache=self.paths.absolute_cache_path(posixpath.basename(ensure_sep(path_orig)), key),
            key=key,
            arguments=self.resolver.generation_arguments(key),
            settings=self.resolver.format_settings(key),
            reason=reason,
        )

    def dispatch(self, format: str | None, id: str | None, file: str | None, query: Mapping | None = None) -> DispatchOutcome:
        """Decide which file answers the request and with which status."""
        query = query or {}
        try:
            key = self.validate(format, id, file, query)
            self.check_access(key, format, id, file, query)
            return self.locate(key, id, file)
        except InvalidRequest as e:
            logger.info("delivery_rejected", status=412, reason=str(e), format=format, id=id)
            return self.fallback(412, FormatKey(self.resolver.default_format), str(e))
        except AccessDenied as e:
            logger.info("delivery_rejected", status=403, reason=str(e), format=format, id=id)
            return self.fallback(403, key, str(e))
        except AssetNotFound as e:
            logger.info("delivery_rejected", status=404, reason=str(e), format=format, id=id)
            return self.fallback(404, key, str(e))

    def ensure_generated(self, outcome: DispatchOutcome) -> bool:
        """Render the cache file if missing; True when the generator ran."""
        path_cache = outcome.path_cache
        if os.path.isfile(path_cache):
            return False

        with self.locks.hold(path_cache):
            # Another request may have rendered it while we waited
            if os.path.isfile(path_cache):
                return False
            self.generator.generate(outcome.path_orig, path_cache, dict(outcome.settings))
            if not os.path.isfile(path_cache):
                raise GenerationFailure(
                    f'Generator did not produce "{path_cache}".', path_cache
                )
        return True

    def generate_and_serve(self, outcome: DispatchOutcome, serve: Callable[[str, int], R]) -> R:
        self.ensure_generated(outcome)
        return serve(outcome.path_cache, outcome.status)
