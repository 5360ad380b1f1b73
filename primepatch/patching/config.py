"""Run configuration loaded from JSON.

    {"v": 1,
     "build_version": "GM8E01-00",
     "program_image": "default.dol",
     "symbols": "symbols.json",
     "strict": true,
     "log_level": "INFO",
     "patches": [{"key": {...}, "function": "module:function", "params": {...}}]}

Only `v` is required. `symbols` is resolved relative to the config file.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .registry import PatchDescriptor, Patcher, descriptor_from_obj
from .symbols import SymbolTable, load_symbols

log = logging.getLogger(__name__)

_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass(frozen=True)
class PatcherConfig:
    version: int = 1
    build_version: Optional[str] = None
    program_image: str = "default.dol"
    symbols_path: Optional[str] = None
    strict: bool = True
    log_level: str = "INFO"
    patches: List[PatchDescriptor] = field(default_factory=list)

    def to_json(self) -> str:
        obj: Dict[str, Any] = {
            "v": int(self.version),
            "program_image": str(self.program_image),
            "strict": bool(self.strict),
            "log_level": str(self.log_level),
            "patches": [p.to_obj() for p in self.patches],
        }
        if self.build_version:
            obj["build_version"] = str(self.build_version)
        if self.symbols_path:
            obj["symbols"] = str(self.symbols_path)
        return json.dumps(obj, indent=2, sort_keys=True)

    def load_symbols(self) -> Optional[SymbolTable]:
        if not self.symbols_path:
            return None
        return load_symbols(self.symbols_path)

    def build_patcher(self) -> Patcher:
        patcher = Patcher(
            symbols=self.load_symbols(),
            build_version=self.build_version,
            program_image=self.program_image,
            strict=self.strict,
        )
        for desc in self.patches:
            patcher.register(desc)
        log.debug("registered %d patches from config", len(self.patches))
        return patcher


def config_from_json(s: str, *, base_dir: Optional[str] = None) -> PatcherConfig:
    obj = json.loads(s)
    if not isinstance(obj, dict):
        raise ValueError("config json must be an object")
    v = int(obj.get("v", 0))
    if v != 1:
        raise ValueError(f"unsupported config version: {v}")

    build_version = obj.get("build_version")
    if build_version is not None:
        build_version = str(build_version).strip() or None
    program_image = str(obj.get("program_image", "default.dol")).strip()
    if not program_image:
        raise ValueError("config program_image must not be empty")

    symbols_path = obj.get("symbols")
    if symbols_path is not None:
        symbols_path = str(symbols_path).strip() or None
    if symbols_path and base_dir and not os.path.isabs(symbols_path):
        symbols_path = os.path.join(base_dir, symbols_path)

    strict = obj.get("strict", True)
    if not isinstance(strict, bool):
        raise ValueError("config strict must be a boolean")
    log_level = str(obj.get("log_level", "INFO")).strip().upper()
    if log_level not in _LEVELS:
        raise ValueError(f"unknown log level: {log_level!r}")

    patches = obj.get("patches", [])
    if not isinstance(patches, list):
        raise ValueError("config patches must be a list")

    return PatcherConfig(
        version=1,
        build_version=build_version,
        program_image=program_image,
        symbols_path=symbols_path,
        strict=strict,
        log_level=log_level,
        patches=[descriptor_from_obj(p) for p in patches],
    )


def load_config(path: str) -> PatcherConfig:
    with open(path, "r", encoding="utf-8") as f:
        text = f.read()
    return config_from_json(text, base_dir=os.path.dirname(os.path.abspath(path)))
