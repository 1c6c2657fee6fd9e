"""
CMake build-graph emitter.

One compile_shader() rule per catalog job, each with a compiler-written
depfile, plus the aggregate ``vulkan-shaders`` target. In embed mode that
target re-runs the generator to turn the compiled artifacts into C++.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Sequence, Tuple, Union

from .catalog import Catalog, CompileJob
from .config import GeneratorConfig
from .errors import ShaderGenError
from .fileio import write_file_if_changed

PROJECT_NAME = "vulkan-shaders"
TARGET_NAME = "vulkan-shaders"
CMAKE_MINIMUM_VERSION = "3.14"


def cmake_escape(text: str) -> str:
    return text.replace("\\", "\\\\").replace('"', '\\"')


def cmake_quote(value: Union[str, Path]) -> str:
    if isinstance(value, Path):
        value = value.as_posix()
    return f'"{cmake_escape(value)}"'


@dataclass(frozen=True)
class BuildRule:
    name: str
    compiler: str
    input_path: Path
    output_path: Path
    flags: Tuple[str, ...]

    @property
    def depfile(self) -> Path:
        return self.output_path.with_name(self.output_path.name + ".d")

    @classmethod
    def from_job(cls, job: CompileJob, compiler: str) -> "BuildRule":
        return cls(
            name=job.name,
            compiler=compiler,
            input_path=job.input_path,
            output_path=job.output_path,
            flags=tuple(job.flags()),
        )


class BuildGraph:
    def __init__(self, compiler: str) -> None:
        self.compiler = compiler
        self._lines: List[str] = []
        self._rules: List[BuildRule] = []
        self._outputs: Dict[Path, str] = {}
        self._has_target = False

    @property
    def rules(self) -> Tuple[BuildRule, ...]:
        return tuple(self._rules)

    def add_header(self, command: Sequence[str]) -> None:
        lines = self._lines
        lines.append("# Generated with " + " ".join(command))
        lines.append("")
        lines.append(f"cmake_minimum_required(VERSION {CMAKE_MINIMUM_VERSION})")
        lines.append(f"project({PROJECT_NAME})")
        lines.append("")
        lines.append(f"set(GLSLC {cmake_quote(self.compiler)})")
        lines.append("")
        lines.append("function(compile_shader name in_file out_file flags)")
        lines.append("  add_custom_command(")
        lines.append("    OUTPUT ${out_file}")
        lines.append("    COMMAND ${GLSLC} ${flags} ${ARGN} -MD -MF ${out_file}.d ${in_file} -o ${out_file}")
        lines.append("    DEPENDS ${in_file}")
        lines.append("    DEPFILE ${out_file}.d")
        lines.append('    COMMENT "Building Vulkan shader ${name}.spv"')
        lines.append("  )")
        lines.append("endfunction()")
        lines.append("")

    def add_rule(self, job: CompileJob) -> BuildRule:
        rule = BuildRule.from_job(job, self.compiler)
        owner = self._outputs.get(rule.output_path)
        if owner is not None:
            raise ShaderGenError(
                f"build rules {owner} and {rule.name} both write {rule.output_path.as_posix()}"
            )
        self._outputs[rule.output_path] = rule.name
        self._rules.append(rule)

        args = [rule.name, cmake_quote(rule.input_path), cmake_quote(rule.output_path)]
        args.extend(cmake_quote(flag) for flag in rule.flags)
        self._lines.append("compile_shader(" + " ".join(args) + ")")
        return rule

    def add_catalog(self, catalog: Catalog) -> None:
        for job in catalog:
            self.add_rule(job)

    def add_target_embed(self, generator: Sequence[str], config: GeneratorConfig) -> None:
        """Re-run the generator in embed mode once every artifact is built.

        ``generator`` is the command prefix that starts the generator; the
        compiler, directories, targets and capability flags come from
        ``config`` so both runs enumerate the same catalog.
        """
        self._begin_target()
        command = list(generator)
        command += ["--glslc", config.glslc]
        command += ["--input-dir", config.input_dir.as_posix()]
        command += ["--output-dir", config.output_dir.as_posix()]
        command += ["--target-hpp", config.target_hpp.as_posix()]
        command += ["--target-cpp", config.target_cpp.as_posix()]
        command += config.capabilities.to_args()

        lines = self._lines
        lines.append("")
        lines.append("add_custom_command(")
        lines.append(f"  OUTPUT {cmake_quote(config.target_hpp)} {cmake_quote(config.target_cpp)}")
        lines.append("  COMMAND " + " ".join(cmake_quote(arg) for arg in command))
        lines.append("  DEPENDS")
        for rule in self._rules:
            lines.append(f"    {cmake_quote(rule.output_path)}")
        lines.append('  COMMENT "Embedding Vulkan shaders into C++ source"')
        lines.append(")")
        lines.append("")
        lines.append(f"add_custom_target({TARGET_NAME} ALL DEPENDS")
        lines.append(f"  {cmake_quote(config.target_hpp)}")
        lines.append(f"  {cmake_quote(config.target_cpp)}")
        lines.append(")")

    def add_target_build_only(self) -> None:
        self._begin_target()
        lines = self._lines
        lines.append("")
        lines.append(f"add_custom_target({TARGET_NAME} ALL DEPENDS")
        for rule in self._rules:
            lines.append(f"  {cmake_quote(rule.output_path)}")
        lines.append(")")

    def _begin_target(self) -> None:
        if self._has_target:
            raise ShaderGenError(f"build graph already defines the {TARGET_NAME} target")
        self._has_target = True

    def render(self) -> str:
        return "\n".join(self._lines) + "\n"

    def write(self, path: Path) -> bool:
        return write_file_if_changed(path, self.render())
