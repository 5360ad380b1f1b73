"""Error taxonomy shared by the codecs, the dispatcher and the code injector.

Every error is fatal to a run. Messages always name the resource key
(archive/asset id/type), file path, or symbol/address and build version that
caused them.
"""

from __future__ import annotations

from typing import Any, Optional


class PatcherError(Exception):
    """Base class for every failure raised by primepatch."""


class ContainerFormatError(PatcherError):
    """The container, an archive table or the program image is malformed."""


class ResourceDecodeError(PatcherError):
    """A payload did not parse as its type tag says (wrong build/version)."""

    def __init__(self, message: str, *, key: Any = None):
        self.key = key
        if key is not None:
            message = f"{key}: {message}"
        super().__init__(message)


class PatchApplicationError(PatcherError):
    """A registered transform failed; carries the key it was registered on."""

    def __init__(self, key: Any, message: str):
        self.key = key
        super().__init__(f"{key}: {message}")


class MissingObjectError(PatchApplicationError):
    """An object a transform expected to exist is absent from the Area."""

    def __init__(
        self,
        key: Any,
        *,
        instance_id: Optional[int] = None,
        name: Optional[str] = None,
    ):
        self.instance_id = instance_id
        self.name = name
        if instance_id is not None:
            what = f"instance id 0x{int(instance_id):08X}"
        else:
            what = f"name {name!r}"
        super().__init__(key, f"object with {what} not found")


class AllocatorError(PatcherError):
    """Invalid layer index, or the layer/id space of an Area is exhausted."""


class ArenaOverflowError(PatcherError):
    """The code arena ran out of space, or two image writes overlap."""

    def __init__(self, message: str, *, build_version: Optional[str] = None):
        self.build_version = build_version
        if build_version:
            message = f"[{build_version}] {message}"
        super().__init__(message)


class HookConflictError(ArenaOverflowError):
    """A source address was hooked twice without explicit chaining."""


class UnknownSymbolError(PatcherError):
    def __init__(self, name: str, build_version: str):
        self.name = name
        self.build_version = build_version
        super().__init__(f"symbol {name!r} is not known for build {build_version}")


class SizeBudgetExceeded(PatcherError):
    def __init__(self, what: str, size: int, capacity: int):
        self.size = int(size)
        self.capacity = int(capacity)
        super().__init__(
            f"{what}: serialized size 0x{self.size:X} exceeds capacity 0x{self.capacity:X}"
        )
