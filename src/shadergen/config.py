from __future__ import annotations

import json
import tempfile
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, List, Optional

from .errors import ShaderGenError


@dataclass(frozen=True)
class Capabilities:
    """Compiler/hardware features the generated catalog may rely on.

    These are fixed for one build of the toolchain: a variant whose
    capability is off is never enumerated.
    """

    coopmat: bool = False
    coopmat2: bool = False
    integer_dot: bool = False
    bfloat16: bool = False
    debug_info: bool = False

    def enabled(self, name: str) -> bool:
        return bool(getattr(self, name))

    def merged(self, other: "Capabilities") -> "Capabilities":
        return replace(self, **{f.name: getattr(self, f.name) or getattr(other, f.name) for f in fields(self)})

    def to_args(self) -> List[str]:
        return [_flag_name(f.name) for f in fields(self) if getattr(self, f.name)]


def _flag_name(field_name: str) -> str:
    return "--" + field_name.replace("_", "-")


CAPABILITY_NAMES = tuple(f.name for f in fields(Capabilities))


def load_capabilities(path: Path) -> Capabilities:
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError as e:
        raise ShaderGenError(f"Missing capability file: {path.as_posix()}") from e
    except json.JSONDecodeError as e:
        raise ShaderGenError(f"Invalid JSON in capability file: {path.as_posix()}: {e}") from e
    except UnicodeDecodeError as e:
        raise ShaderGenError(f"Capability file is not UTF-8: {path.as_posix()}: {e}") from e
    except OSError as e:
        raise ShaderGenError(f"Cannot read capability file: {path.as_posix()}: {e.strerror or e}") from e
    return capabilities_from_mapping(raw, where=path.as_posix())


def capabilities_from_mapping(raw: Any, *, where: str = "<capabilities>") -> Capabilities:
    if not isinstance(raw, dict):
        raise ShaderGenError(f"{where}: expected a JSON object, got {type(raw).__name__}")
    values: Dict[str, bool] = {}
    for key, value in raw.items():
        if key not in CAPABILITY_NAMES:
            raise ShaderGenError(f"{where}: unknown capability {key!r}")
        if not isinstance(value, bool):
            raise ShaderGenError(f"{where}: capability {key!r} must be true or false")
        values[key] = value
    return Capabilities(**values)


@dataclass(frozen=True)
class GeneratorConfig:
    glslc: str = "glslc"
    input_dir: Path = Path("vulkan-shaders")
    output_dir: Path = field(default_factory=lambda: Path(tempfile.gettempdir()))
    target_hpp: Path = Path("vulkan-shaders.hpp")
    target_cpp: Path = Path("vulkan-shaders.cpp")
    target_cmake: Optional[Path] = None
    no_embed: bool = False
    capabilities: Capabilities = field(default_factory=Capabilities)

    def validate(self) -> None:
        if self.no_embed and self.target_cmake is None:
            raise ShaderGenError("--no-embed requires --target-cmake to be specified")
        if not self.input_dir.is_dir():
            raise ShaderGenError(f"Input directory does not exist: {self.input_dir.as_posix()}")
