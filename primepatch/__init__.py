"""primepatch: resource patch engine for archive-of-archives disc images.

Registers keyed transforms over the archives, decoded Areas and raw files of a
disc image, applies them in one deterministic pass, and patches the embedded
program image through a symbol-resolved code injector.
"""

from .core.container import Container, read_container, write_container
from .core.types import Area, Connection, ConnectionMsg, ConnectionState, Dependency, Layer, SclyObject
from .errors import (
    AllocatorError,
    ArenaOverflowError,
    ContainerFormatError,
    HookConflictError,
    MissingObjectError,
    PatchApplicationError,
    PatcherError,
    ResourceDecodeError,
    SizeBudgetExceeded,
    UnknownSymbolError,
)
from .patching.area_handle import AreaHandle
from .patching.config import PatcherConfig, config_from_json, load_config
from .patching.injector import CodeCave, CodeInjector, Hook
from .patching.keys import AreaKey, FileKey, ResourceKey
from .patching.registry import PatchDescriptor, Patcher
from .patching.state import PatcherState
from .patching.symbols import SymbolTable, load_symbols

__version__ = "0.1.0"
