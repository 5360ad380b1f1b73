"""Match keys: the three key spaces a transform can be registered on."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Union

AREA_TYPE = "MREA"


@dataclass(frozen=True)
class ResourceKey:
    archive: str
    asset_id: int
    type_tag: str

    def __str__(self) -> str:
        return f"{self.archive}:0x{int(self.asset_id):08X}.{self.type_tag}"


@dataclass(frozen=True)
class AreaKey:
    archive: str
    asset_id: int

    @property
    def type_tag(self) -> str:
        return AREA_TYPE

    def __str__(self) -> str:
        return f"{self.archive}:0x{int(self.asset_id):08X}.{AREA_TYPE}"


@dataclass(frozen=True)
class FileKey:
    path: str

    def __str__(self) -> str:
        return self.path


MatchKey = Union[ResourceKey, AreaKey, FileKey]


def key_matches_resource(key: MatchKey, archive: str, asset_id: int, type_tag: str) -> bool:
    if isinstance(key, ResourceKey):
        return key.archive == archive and key.asset_id == asset_id and key.type_tag == type_tag
    if isinstance(key, AreaKey):
        return key.archive == archive and key.asset_id == asset_id and type_tag == AREA_TYPE
    return False


def key_to_obj(key: MatchKey) -> Dict[str, Any]:
    if isinstance(key, ResourceKey):
        return {
            "kind": "resource",
            "archive": key.archive,
            "asset_id": int(key.asset_id),
            "type": key.type_tag,
        }
    if isinstance(key, AreaKey):
        return {"kind": "area", "archive": key.archive, "asset_id": int(key.asset_id)}
    return {"kind": "file", "path": key.path}


def _asset_id(v: Any) -> int:
    if isinstance(v, str):
        return int(v, 0)
    return int(v)


def key_from_obj(obj: Any) -> MatchKey:
    if not isinstance(obj, dict):
        raise ValueError("patch key must be an object")
    kind = str(obj.get("kind", "")).strip()
    if kind == "resource":
        archive = str(obj.get("archive", "")).strip()
        tag = str(obj.get("type", ""))
        if not archive or len(tag) != 4:
            raise ValueError("resource key needs an archive and a 4-character type")
        return ResourceKey(archive, _asset_id(obj.get("asset_id", -1)), tag)
    if kind == "area":
        archive = str(obj.get("archive", "")).strip()
        if not archive:
            raise ValueError("area key needs an archive")
        return AreaKey(archive, _asset_id(obj.get("asset_id", -1)))
    if kind == "file":
        path = str(obj.get("path", "")).strip()
        if not path:
            raise ValueError("file key needs a path")
        return FileKey(path)
    raise ValueError(f"unknown patch key kind: {kind!r}")
