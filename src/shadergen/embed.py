"""
Embeds compiled shader artifacts into a C++ header/source pair.

The header declares one ``<name>_data`` / ``<name>_len`` pair per artifact
and the dispatch lookup tables; the source defines the byte arrays and
the tables. In no-embed mode the header instead points the runtime at the
``.spv`` files on disk.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Sequence, Tuple

from .catalog import Catalog, LookupTable
from .fileio import read_binary_file, write_file_if_changed

BANNER = "// AUTO-GENERATED by shadergen; do not edit manually."
SHADER_DIR_DEFINE = "VK_SHADER_DIR"
BYTES_PER_LINE = 12


@dataclass(frozen=True)
class EmbeddedArtifact:
    name: str
    data: bytes

    @property
    def length(self) -> int:
        return len(self.data)


def read_artifacts(catalog: Catalog) -> List[EmbeddedArtifact]:
    artifacts: List[EmbeddedArtifact] = []
    for job in catalog:
        data = read_binary_file(job.output_path, may_not_exist=True)
        if not data:
            continue
        artifacts.append(EmbeddedArtifact(job.name, data))
    return artifacts


def format_byte_literal(data: bytes) -> str:
    tokens = [f"0x{b:x}," for b in data]
    lines = ["".join(tokens[i : i + BYTES_PER_LINE]) for i in range(0, len(tokens), BYTES_PER_LINE)]
    return "\n".join(lines)


def _dims(shape: Sequence[int]) -> str:
    return "".join(f"[{extent}]" for extent in shape)


def _initializer(values: Sequence[str], shape: Sequence[int]) -> str:
    if len(shape) == 1:
        return "{" + ", ".join(values) + "}"
    step = len(values) // shape[0]
    parts = [_initializer(values[i * step : (i + 1) * step], shape[1:]) for i in range(shape[0])]
    return "{" + ", ".join(parts) + "}"


def _table_lines(table: LookupTable, available: Dict[str, int]) -> Tuple[List[str], List[str]]:
    dims = _dims(table.shape)
    data_refs: List[str] = []
    len_refs: List[str] = []
    for entry in table.entries:
        if entry in available:
            data_refs.append(f"{entry}_data")
            len_refs.append(f"{entry}_len")
        else:
            data_refs.append("nullptr")
            len_refs.append("0")
    axes = ", ".join(table.axes)
    header = [
        f"// {table.name}: indexed by [{axes}]",
        f"extern const void * {table.name}_data{dims};",
        f"extern const uint64_t {table.name}_len{dims};",
    ]
    source = [
        f"const void * {table.name}_data{dims} = {_initializer(data_refs, table.shape)};",
        f"const uint64_t {table.name}_len{dims} = {_initializer(len_refs, table.shape)};",
    ]
    return header, source


def render_embed_files(
    catalog: Catalog,
    *,
    hpp_name: str,
    no_embed: bool,
    output_dir: Path,
) -> Tuple[str, str]:
    hdr: List[str] = [BANNER, "#include <cstdint>", ""]
    src: List[str] = [BANNER, f'#include "{hpp_name}"', ""]

    available: Dict[str, int] = {}
    if no_embed:
        hdr.append(f'#define {SHADER_DIR_DEFINE} "{output_dir.as_posix()}"')
        hdr.append("")
        for job in catalog:
            hdr.append(f'inline constexpr char const * {job.name}_data = "{job.output_path.name}";')
            hdr.append(f"const uint64_t {job.name}_len = 0;")
            hdr.append("")
            available[job.name] = 0
    else:
        for artifact in read_artifacts(catalog):
            n = artifact.length
            hdr.append(f"extern const unsigned char {artifact.name}_data[{n}];")
            hdr.append(f"const uint64_t {artifact.name}_len = {n};")
            hdr.append("")
            src.append(f"const unsigned char {artifact.name}_data[{n}] = {{")
            src.append(format_byte_literal(artifact.data))
            src.append("};")
            src.append("")
            available[artifact.name] = n

    for table in catalog.tables:
        table_hdr, table_src = _table_lines(table, available)
        hdr.extend(table_hdr)
        src.extend(table_src)
    hdr.append("")
    src.append("")

    return "\n".join(hdr), "\n".join(src)


def write_embed_files(
    catalog: Catalog,
    target_hpp: Path,
    target_cpp: Path,
    *,
    no_embed: bool,
    output_dir: Path,
) -> Tuple[bool, bool]:
    """Render and write both units; returns which of (hpp, cpp) were rewritten."""
    hdr, src = render_embed_files(catalog, hpp_name=target_hpp.name, no_embed=no_embed, output_dir=output_dir)
    return write_file_if_changed(target_hpp, hdr), write_file_if_changed(target_cpp, src)
