"""Generic transforms that configs can reference as `primepatch.patching.builtin:<name>`.

Parameters are plain JSON values: integers may be given as hex strings,
byte strings as hex.
"""

from __future__ import annotations

import logging
from typing import Any, List, Optional, Sequence, Union

from ..core.types import Dependency
from .area_handle import AreaHandle
from .state import PatcherState

log = logging.getLogger(__name__)


def _int(v: Any) -> int:
    return int(v, 0) if isinstance(v, str) else int(v)


def _address_or_symbol(v: Union[int, str]) -> Union[int, str]:
    """Numeric strings in any base are addresses; anything else names a symbol."""
    if not isinstance(v, str):
        return _int(v)
    try:
        return int(v, 0)
    except ValueError:
        return v


def _hex(v: Optional[str]) -> Optional[bytes]:
    if v is None:
        return None
    return bytes.fromhex(str(v).replace(" ", ""))


def set_layer_active(state: PatcherState, area: AreaHandle, *, layer: int, active: bool = True) -> None:
    area.set_layer_active(_int(layer), bool(active))


def add_layer(state: PatcherState, area: AreaHandle, *, name: str, active: bool = True) -> None:
    index = area.add_layer(name, active)
    log.debug("%s: added layer %d %r", area.key, index, name)


def remove_objects(
    state: PatcherState, area: AreaHandle, *, instance_ids: Sequence[Union[int, str]]
) -> None:
    for inst in instance_ids:
        area.remove_object(_int(inst))


def add_connection(
    state: PatcherState,
    area: AreaHandle,
    *,
    source: Union[int, str],
    target: Union[int, str],
    conn_state: Union[int, str],
    message: Union[int, str],
) -> None:
    target_id = _int(target)
    area.get_object(target_id)
    area.get_object(_int(source)).add_connection(_int(conn_state), _int(message), target_id)


def add_dependencies(
    state: PatcherState, area: AreaHandle, *, layer: int, deps: Sequence[Sequence[Any]]
) -> None:
    parsed: List[Dependency] = [Dependency(_int(d[0]), str(d[1])) for d in deps]
    area.add_dependencies(_int(layer), parsed)


def patch_bytes(
    state: PatcherState,
    handle,
    *,
    offset: Union[int, str],
    data: str,
    expected: Optional[str] = None,
) -> None:
    """Overwrite bytes of a resource or file payload, optionally checking the old bytes."""
    off = _int(offset)
    new = _hex(data) or b""
    old = _hex(expected)
    if off < 0 or off + len(new) > len(handle.data):
        raise ValueError(f"patch at 0x{off:X} (+{len(new)}) is outside the payload")
    if old is not None and bytes(handle.data[off : off + len(old)]) != old:
        raise ValueError(f"bytes at 0x{off:X} do not match the expected original")
    handle.data[off : off + len(new)] = new


def program_overwrite(
    state: PatcherState,
    handle,
    *,
    address: Union[int, str],
    data: str,
    expected: Optional[str] = None,
) -> None:
    state.code.overwrite(_int(address), _hex(data) or b"", _hex(expected))


def program_hook(
    state: PatcherState,
    handle,
    *,
    source: Union[int, str],
    target: Union[int, str],
    link: bool = False,
) -> None:
    """Branch from `source` to `target` (an address or a symbol name)."""
    state.code.hook(_int(source), _address_or_symbol(target), link=bool(link))
