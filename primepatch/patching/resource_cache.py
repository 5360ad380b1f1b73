"""Lazy per-run cache of archive resources.

A resource is decompressed on first access and, for Areas, decoded on first
area access. The cache keeps one current view per resource (bytes or Area)
and converts between them as transforms of either kind run. On write-back a
resource is re-encoded, and recompressed only when its payload changed.
"""

from __future__ import annotations

import logging
import struct
from typing import Dict, Optional, Set, Tuple

from ..core import compression
from ..core.container import Container
from ..core.pak import Archive, PakResource, pad_stored, parse_pak
from ..core.scly import Violation, decode_area, encode_area, integrity_violations
from ..core.types import Area
from ..errors import PatchApplicationError, ResourceDecodeError
from .keys import ResourceKey

log = logging.getLogger(__name__)


class ResourceHandle:
    """Decompressed payload of one resource as a mutable `bytearray`."""

    def __init__(self, key: ResourceKey, data: bytearray):
        self.key = key
        self.data = data

    @property
    def asset_id(self) -> int:
        return self.key.asset_id

    @property
    def type_tag(self) -> str:
        return self.key.type_tag

    def __repr__(self) -> str:
        return f"ResourceHandle({self.key})"


class FileHandle:
    """Raw bytes of one container file as a mutable `bytearray`."""

    def __init__(self, path: str, data: bytearray):
        self.path = path
        self.data = data

    def __repr__(self) -> str:
        return f"FileHandle({self.path!r})"


class CachedResource:
    def __init__(self, key: ResourceKey, resource: PakResource):
        self.key = key
        self.resource = resource
        self._original: Optional[bytes] = None
        self._raw: Optional[bytearray] = None
        self._area: Optional[Area] = None
        self.baseline: Optional[Set[Violation]] = None

    def _payload(self) -> bytes:
        if self._original is None:
            stored = self.resource.stored
            try:
                self._original = compression.decompress(stored) if self.resource.compressed else bytes(stored)
            except ResourceDecodeError as e:
                raise ResourceDecodeError(str(e), key=self.key) from e
        return self._original

    @property
    def area(self) -> Optional[Area]:
        return self._area

    def _encode(self) -> bytes:
        try:
            return encode_area(self._area)
        except (ValueError, OverflowError, TypeError, struct.error) as e:
            raise PatchApplicationError(self.key, f"cannot encode area: {e}") from e

    def bytes_view(self) -> bytearray:
        if self._area is not None:
            self._raw = bytearray(self._encode())
            self._area = None
        if self._raw is None:
            self._raw = bytearray(self._payload())
        return self._raw

    def area_view(self) -> Area:
        if self._area is not None:
            return self._area
        original = self._payload()
        try:
            if self.baseline is None:
                base_area = decode_area(original)
                self.baseline = integrity_violations(base_area)
                if self._raw is None or bytes(self._raw) == original:
                    self._area = base_area
            if self._area is None:
                self._area = decode_area(bytes(self._raw))
        except ResourceDecodeError as e:
            raise ResourceDecodeError(str(e), key=self.key) from e
        self._raw = None
        return self._area

    def final_payload(self) -> Optional[bytes]:
        if self._area is not None:
            return self._encode()
        if self._raw is not None:
            return bytes(self._raw)
        return None

    def final_resource(self) -> Tuple[PakResource, bool]:
        """(resource to store, changed)."""
        payload = self.final_payload()
        if payload is None or payload == self._payload():
            return self.resource, False
        if self.resource.compressed:
            stored = pad_stored(compression.compress(payload))
        else:
            stored = payload
        return (
            PakResource(
                asset_id=self.resource.asset_id,
                type_tag=self.resource.type_tag,
                compressed=self.resource.compressed,
                stored=stored,
            ),
            True,
        )


class ResourceCache:
    def __init__(self, container: Container):
        self.container = container
        self.archives: Dict[str, Archive] = {}
        for ent in container.archive_entries():
            self.archives[ent.name] = parse_pak(ent.name, ent.data)
        self._cached: Dict[Tuple[str, int], CachedResource] = {}
        self.dirty: Set[str] = set()

    def get(self, archive: str, index: int) -> CachedResource:
        k = (archive, int(index))
        c = self._cached.get(k)
        if c is None:
            res = self.archives[archive].resources[int(index)]
            c = CachedResource(ResourceKey(archive, res.asset_id, res.type_tag), res)
            self._cached[k] = c
            log.debug("cache: loaded %s", c.key)
        return c

    def current_resource(self, archive: str, index: int) -> PakResource:
        c = self._cached.get((archive, int(index)))
        if c is None:
            return self.archives[archive].resources[int(index)]
        return c.final_resource()[0]

    def write_back(self) -> int:
        """Store every changed resource into its archive; returns how many changed."""
        changed = 0
        for (archive, index), c in sorted(self._cached.items()):
            res, did_change = c.final_resource()
            if not did_change:
                continue
            self.archives[archive].replace_stored(index, res.stored, compressed=res.compressed)
            self.dirty.add(archive)
            changed += 1
        return changed
