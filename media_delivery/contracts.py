"""
Capability contracts for objects owned by the host application.

Images, videos and users are persisted elsewhere; this package only talks to
them through the protocols below.
"""
from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

# Opaque policy subject (usually the current user); may be None
Actor = Any


@runtime_checkable
class Resource(Protocol):
    """An image that can be delivered in configured formats."""

    id: Any
    file: str

    def has_clipping(self, format: str) -> bool: ...

    def get_clipping(self, format: str) -> Any: ...

    def has_focal_point(self) -> bool: ...

    def get_focal_point(self) -> Any: ...

    def use_blurred_format(self, actor: Actor | None) -> bool: ...

    def use_watermarked_format(self, actor: Actor | None) -> bool: ...


@runtime_checkable
class Video(Protocol):
    id: Any
    file: str
