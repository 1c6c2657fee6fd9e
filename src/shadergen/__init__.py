"""Build-time generator for Vulkan compute shader variants."""

from __future__ import annotations

from .catalog import Catalog, CompileJob, LookupTable, Variant, build_catalog
from .config import Capabilities, GeneratorConfig
from .errors import ShaderGenError

__version__ = "0.1.0"

__all__ = [
    "Capabilities",
    "Catalog",
    "CompileJob",
    "GeneratorConfig",
    "LookupTable",
    "ShaderGenError",
    "Variant",
    "build_catalog",
]
