from __future__ import annotations

import enum
import functools
import hashlib
import importlib.util
import os
import re
import sys
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Callable, Dict, Iterator, List, Mapping, Optional, Sequence, Tuple

from lexer import NASLError

if TYPE_CHECKING:
    from interpreter import Context, Register, Value


EXTENSION_API_VERSION = 1

BUNDLED_EXTENSION_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), "ext")
BUNDLED_EXTENSIONS = ("std.py", "hostname.py")


class NASLExtensionError(NASLError):
    pass


class FunctionErrorKind(enum.Enum):
    MISSING_ARGUMENT = "missing_argument"
    WRONG_ARGUMENT_TYPE = "wrong_argument_type"
    INVALID_VALUE = "invalid_value"


class FunctionError(NASLError):
    """Raised by a native function that cannot produce a value."""

    def __init__(self, kind: FunctionErrorKind, message: str) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message


NativeFunction = Callable[["Register", "Context"], "Value"]


@dataclass(frozen=True)
class ExtensionMetadata:
    name: str
    version: str = "0.0.0"
    requires_api: int = EXTENSION_API_VERSION


@dataclass(frozen=True)
class FunctionSpec:
    name: str
    impl: NativeFunction
    doc: str = ""
    extension: str = ""


class FunctionTable:
    """Read-only mapping from function name to native implementation.

    Tables are built once and then shared; nothing can add to or replace an
    entry after construction, so independent runs may use different tables
    side by side.
    """

    def __init__(self, specs: Mapping[str, FunctionSpec], *, name: str = "") -> None:
        self.name = name
        self._specs: Mapping[str, FunctionSpec] = MappingProxyType(dict(specs))

    def lookup(self, name: str) -> Optional[NativeFunction]:
        spec = self._specs.get(name)
        return spec.impl if spec is not None else None

    def spec(self, name: str) -> Optional[FunctionSpec]:
        return self._specs.get(name)

    def names(self) -> List[str]:
        return sorted(self._specs)

    def __contains__(self, name: object) -> bool:
        return name in self._specs

    def __iter__(self) -> Iterator[str]:
        return iter(self._specs)

    def __len__(self) -> int:
        return len(self._specs)

    def __repr__(self) -> str:
        return f"FunctionTable(name={self.name!r}, functions={len(self._specs)})"


@dataclass
class TableBuilder:
    functions: Dict[str, FunctionSpec] = field(default_factory=dict)
    metadata: List[ExtensionMetadata] = field(default_factory=list)

    def build(self, name: str = "") -> FunctionTable:
        return FunctionTable(self.functions, name=name)


class ExtensionAPI:
    def __init__(self, *, builder: TableBuilder, ext_name: str) -> None:
        self._builder = builder
        self._ext_name = ext_name

    @property
    def name(self) -> str:
        return self._ext_name

    # ---- metadata ----
    def metadata(self, *, name: str, version: str = "0.0.0", requires_api: int = EXTENSION_API_VERSION) -> None:
        self._builder.metadata.append(ExtensionMetadata(name=name, version=version, requires_api=requires_api))

    # ---- functions ----
    def register_function(self, name: str, impl: NativeFunction, *, doc: str = "") -> None:
        if not name:
            raise NASLExtensionError("Function name must be non-empty")
        if not callable(impl):
            raise NASLExtensionError(f"Function '{name}' must be callable")
        existing = self._builder.functions.get(name)
        if existing is not None:
            raise NASLExtensionError(
                f"Function '{name}' from extension '{self._ext_name}' is already defined by '{existing.extension}'"
            )
        self._builder.functions[name] = FunctionSpec(name=name, impl=impl, doc=doc, extension=self._ext_name)

    def function(self, name: Optional[str] = None, *, doc: str = ""):
        def deco(fn: NativeFunction) -> NativeFunction:
            self.register_function(name or fn.__name__, fn, doc=doc or (fn.__doc__ or "").strip())
            return fn

        return deco


def _module_name(path: str) -> str:
    # Two extensions with the same file name must not share a module entry.
    stem = os.path.splitext(os.path.basename(path))[0]
    tag = hashlib.sha256(path.encode("utf-8")).hexdigest()[:12]
    return "nasl_ext_" + re.sub(r"\W", "_", stem) + "_" + tag


def load_extension_module(path: str) -> Any:
    """Import the extension file at path as a fresh, unregistered module."""
    spec = importlib.util.spec_from_file_location(_module_name(path), path) if os.path.isfile(path) else None
    if spec is None or spec.loader is None:
        raise NASLExtensionError(f"Cannot load extension {path}")
    module = importlib.util.module_from_spec(spec)
    helper_dir = os.path.dirname(path)
    added = helper_dir not in sys.path
    if added:
        sys.path.append(helper_dir)
    try:
        spec.loader.exec_module(module)
    finally:
        if added:
            sys.path.remove(helper_dir)
    return module


def gather_extension_paths(paths: Sequence[str]) -> List[str]:
    """Absolute extension paths, with each .naslx pointer file replaced by its entries.

    A pointer file lists one extension per line, relative to the pointer
    file itself. Text after '#' is ignored.
    """
    found: List[str] = []
    for entry in map(os.path.abspath, paths):
        if not entry.lower().endswith(".naslx"):
            found.append(entry)
            continue
        try:
            with open(entry, "r", encoding="utf-8") as handle:
                listed = [line.partition("#")[0].strip() for line in handle]
        except OSError as exc:
            raise NASLExtensionError(f"Cannot read extension list {entry}: {exc}") from exc
        root = os.path.dirname(entry)
        found.extend(os.path.abspath(os.path.join(root, name)) for name in listed if name)
    return found


def register_extension(path: str, builder: TableBuilder) -> str:
    """Run the nasl_register hook of the extension at path against builder."""
    module = load_extension_module(path)
    api_version = getattr(module, "NASL_EXTENSION_API_VERSION", EXTENSION_API_VERSION)
    if api_version != EXTENSION_API_VERSION:
        raise NASLExtensionError(f"Extension {path} requires API {api_version}, host supports {EXTENSION_API_VERSION}")
    register = getattr(module, "nasl_register", None)
    if register is None or not callable(register):
        raise NASLExtensionError(f"Extension {path} must define callable nasl_register(ext)")
    ext_name = str(getattr(module, "NASL_EXTENSION_NAME", os.path.splitext(os.path.basename(path))[0]))
    register(ExtensionAPI(builder=builder, ext_name=ext_name))
    return ext_name


def load_function_tables(paths: Sequence[str]) -> Tuple[FunctionTable, ...]:
    """Build one table per extension file, in the order given."""
    tables: List[FunctionTable] = []
    for path in gather_extension_paths(paths):
        builder = TableBuilder()
        ext_name = register_extension(path, builder)
        tables.append(builder.build(ext_name))
    return tuple(tables)


@functools.lru_cache(maxsize=None)
def build_default_functions() -> FunctionTable:
    """The bundled native functions as a single table.

    The table is immutable, so one instance is shared by every caller.
    """
    builder = TableBuilder()
    for filename in BUNDLED_EXTENSIONS:
        register_extension(os.path.join(BUNDLED_EXTENSION_DIR, filename), builder)
    return builder.build("builtin")
