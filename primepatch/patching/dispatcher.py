"""The single sequential patch pass over a container.

Order of a run:

1. every archive (container order), every resource (archive order): run the
   matching resource/area transforms in registration order, then check the
   graph integrity of a decoded Area
2. file transforms over raw files (container order)
3. finalize: deferred finalizers, required-resource reconciliation, code
   injector into the program image
4. re-encode changed resources, rebuild dirty archives
5. size check, then commit every staged entry into the container at once

The container is only modified in step 5, so a failed run leaves it as it was.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Dict, List, Set

from ..core.container import Container, ContainerEntry, serialized_size
from ..core.dol import parse_dol, serialize_dol
from ..core.pak import serialize_pak
from ..core.scly import new_violations
from ..errors import (
    ContainerFormatError,
    PatchApplicationError,
    SizeBudgetExceeded,
)
from .area_handle import AreaHandle
from .keys import AreaKey, FileKey, MatchKey, ResourceKey, key_matches_resource
from .resource_cache import CachedResource, FileHandle, ResourceCache, ResourceHandle
from .state import PatcherState

if TYPE_CHECKING:
    from .registry import PatchRegistration, Patcher

log = logging.getLogger(__name__)


def _invoke(state: PatcherState, key: MatchKey, reg: "PatchRegistration", handle) -> None:
    log.debug("apply %s -> %s", reg.name, key)
    try:
        reg.fn(state, handle, **reg.params)
    except PatchApplicationError:
        raise
    except Exception as e:
        raise PatchApplicationError(key, f"{reg.name} failed: {e}") from e
    state.applied.append(f"{key} {reg.name}")


def _run_resource_chain(
    state: PatcherState,
    cached: CachedResource,
    regs: List["PatchRegistration"],
) -> None:
    for reg in regs:
        if isinstance(reg.key, AreaKey):
            area = cached.area_view()
            _invoke(state, reg.key, reg, AreaHandle(state, reg.key, area))
        else:
            _invoke(state, reg.key, reg, ResourceHandle(cached.key, cached.bytes_view()))

    # a bytes transform after an area transform leaves only the byte view
    if cached.baseline is not None:
        bad = new_violations(cached.area_view(), cached.baseline)
        if bad:
            shown = "; ".join(str(v) for v in bad[:5])
            more = f" (+{len(bad) - 5} more)" if len(bad) > 5 else ""
            raise PatchApplicationError(cached.key, f"graph integrity violated: {shown}{more}")


def _reconcile_required(state: PatcherState, cache: ResourceCache) -> int:
    copied = 0
    for archive_name, dep in state.required_resources():
        target = cache.archives.get(archive_name)
        if target is None:
            raise PatchApplicationError(archive_name, "archive named by a dependency does not exist")
        if target.contains(dep.asset_id, dep.type_tag):
            continue
        for src_name, src in cache.archives.items():
            if src_name == archive_name:
                continue
            idx = src.find(dep.asset_id, dep.type_tag)
            if idx is None:
                continue
            target.append(cache.current_resource(src_name, idx))
            cache.dirty.add(archive_name)
            copied += 1
            log.debug("copied 0x%08X.%s from %s into %s", dep.asset_id, dep.type_tag, src_name, archive_name)
            break
        else:
            raise PatchApplicationError(
                ResourceKey(archive_name, dep.asset_id, dep.type_tag),
                "required resource is not present in any archive",
            )
    return copied


def run_patches(patcher: "Patcher", container: Container) -> PatcherState:
    build = patcher.build_version or container.build_version
    if patcher.build_version and patcher.build_version != container.build_version:
        raise ContainerFormatError(
            f"configured for build {patcher.build_version}, container is {container.build_version}"
        )
    state = PatcherState(build, symbols=patcher.symbols, program_image=patcher.program_image)
    regs = sorted(patcher.registrations(), key=lambda r: r.order)
    matched: Set[int] = set()

    log.info("[%s] applying %d registrations", build, len(regs))
    cache = ResourceCache(container)
    resource_regs = [r for r in regs if not isinstance(r.key, FileKey)]
    for archive_name, archive in cache.archives.items():
        for index, res in enumerate(list(archive.resources)):
            chain = [
                r
                for r in resource_regs
                if key_matches_resource(r.key, archive_name, res.asset_id, res.type_tag)
            ]
            if not chain:
                continue
            matched.update(r.order for r in chain)
            _run_resource_chain(state, cache.get(archive_name, index), chain)

    staged: Dict[str, bytes] = {}
    file_regs = [r for r in regs if isinstance(r.key, FileKey)]
    for ent in container.file_entries():
        chain = [r for r in file_regs if r.key.path == ent.name]
        if not chain:
            continue
        matched.update(r.order for r in chain)
        handle = FileHandle(ent.name, bytearray(ent.data))
        for reg in chain:
            _invoke(state, reg.key, reg, handle)
        if bytes(handle.data) != ent.data:
            staged[ent.name] = bytes(handle.data)

    unmatched = [r for r in regs if r.order not in matched]
    for r in unmatched:
        log.warning("registration %s on %s matched nothing", r.name, r.key)
    if unmatched and patcher.strict:
        r = unmatched[0]
        raise PatchApplicationError(r.key, f"{r.name} matched no resource or file")

    for call in state.begin_finalize():
        log.debug("finalizer %s", call.name)
        try:
            call.fn(state, *call.args, **call.kwargs)
        except PatchApplicationError:
            raise
        except Exception as e:
            raise PatchApplicationError(f"finalizer {call.name}", str(e)) from e

    copied = _reconcile_required(state, cache)

    if state.has_code:
        image_name = state.program_image
        ent = container.find(image_name)
        if ent is None or ent.is_archive:
            raise ContainerFormatError(f"program image {image_name!r} not found in container")
        state.code.finalize()
        image = parse_dol(staged.get(image_name, ent.data))
        try:
            state.code.apply(image)
        except ContainerFormatError as e:
            raise ContainerFormatError(f"[{build}] {image_name}: {e}") from e
        staged[image_name] = serialize_dol(image)

    changed = cache.write_back()
    for name in cache.dirty:
        staged[name] = serialize_pak(cache.archives[name])
    log.info(
        "[%s] %d resources changed, %d copied, %d entries rewritten",
        build,
        changed,
        copied,
        len(staged),
    )

    new_entries = [
        ContainerEntry(e.name, staged.get(e.name, e.data)) for e in container.entries
    ]
    candidate = Container(
        game_id=container.game_id,
        revision=container.revision,
        capacity=container.capacity,
        entries=new_entries,
        reserved=container.reserved,
    )
    size = serialized_size(candidate)
    if size > container.capacity:
        raise SizeBudgetExceeded("patched disc image", size, container.capacity)

    container.entries = new_entries
    return state

