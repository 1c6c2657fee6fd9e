from __future__ import annotations

import argparse
import sys
import tempfile
from pathlib import Path
from typing import List, Optional, Sequence

from .buildgraph import BuildGraph
from .catalog import build_catalog
from .config import Capabilities, GeneratorConfig, load_capabilities
from .embed import write_embed_files
from .errors import ShaderGenError
from .fileio import ensure_directory

# Prefix the build graph uses to re-run this generator in embed mode.
GENERATOR_COMMAND = (sys.executable, "-m", "shadergen")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="shadergen",
        description="Generate Vulkan compute shader variants, their CMake build graph and C++ embedding units.",
        epilog=(
            "Run with --target-cmake to emit a CMakeLists.txt that compiles every variant; "
            "building its vulkan-shaders target re-runs shadergen without --target-cmake "
            "to embed the compiled artifacts into C++."
        ),
    )
    parser.add_argument("--glslc", "--compiler", dest="glslc", default="glslc", help="Path to the glslc compiler.")
    parser.add_argument("--input-dir", default="vulkan-shaders", help="Directory containing .comp shader sources.")
    parser.add_argument(
        "--output-dir",
        default=tempfile.gettempdir(),
        help="Directory for compiled .spv files (defaults to the system temp dir).",
    )
    parser.add_argument("--target-hpp", default="vulkan-shaders.hpp", help="C++ header to generate.")
    parser.add_argument("--target-cpp", default="vulkan-shaders.cpp", help="C++ source to generate.")
    parser.add_argument("--target-cmake", default=None, help="CMakeLists.txt to generate (build-graph mode).")
    parser.add_argument(
        "--no-embed",
        action="store_true",
        help="Reference .spv files by name instead of embedding them (requires --target-cmake).",
    )
    parser.add_argument("--coopmat", action="store_true", help="Enable cooperative matrix (cm1) variants.")
    parser.add_argument("--coopmat2", action="store_true", help="Enable cooperative matrix 2 (cm2) variants.")
    parser.add_argument("--integer-dot", action="store_true", help="Enable integer dot product variants.")
    parser.add_argument("--bfloat16", action="store_true", help="Compiler supports native bfloat16.")
    parser.add_argument("--debug-info", action="store_true", help="Compile shaders with -g.")
    parser.add_argument(
        "--capabilities",
        default=None,
        help="JSON file with capability booleans; OR-ed with the flags above.",
    )
    return parser


def config_from_args(args: argparse.Namespace) -> GeneratorConfig:
    capabilities = Capabilities(
        coopmat=args.coopmat,
        coopmat2=args.coopmat2,
        integer_dot=args.integer_dot,
        bfloat16=args.bfloat16,
        debug_info=args.debug_info,
    )
    if args.capabilities:
        capabilities = capabilities.merged(load_capabilities(Path(args.capabilities)))
    return GeneratorConfig(
        glslc=args.glslc,
        input_dir=Path(args.input_dir).resolve(),
        output_dir=Path(args.output_dir).resolve(),
        target_hpp=Path(args.target_hpp).resolve(),
        target_cpp=Path(args.target_cpp).resolve(),
        target_cmake=Path(args.target_cmake).resolve() if args.target_cmake else None,
        no_embed=args.no_embed,
        capabilities=capabilities,
    )


def run(config: GeneratorConfig, command: Sequence[str]) -> None:
    config.validate()
    ensure_directory(config.output_dir)

    catalog = build_catalog(
        config.capabilities,
        input_dir=config.input_dir,
        output_dir=config.output_dir,
    )
    print(f"shadergen: generating {len(catalog)} shader variants")

    if config.target_cmake is None or config.no_embed:
        write_embed_files(
            catalog,
            config.target_hpp,
            config.target_cpp,
            no_embed=config.no_embed,
            output_dir=config.output_dir,
        )

    if config.target_cmake is not None:
        ensure_directory(config.target_cmake.parent)
        graph = BuildGraph(config.glslc)
        graph.add_header(command)
        graph.add_catalog(catalog)
        if config.no_embed:
            graph.add_target_build_only()
        else:
            graph.add_target_embed(GENERATOR_COMMAND, config)
        graph.write(config.target_cmake)


def main(argv: Optional[Sequence[str]] = None) -> int:
    if argv is None:
        argv = sys.argv[1:]
    argv = list(argv)
    try:
        args = _build_parser().parse_args(argv)
    except SystemExit as exc:
        return int(exc.code or 0)

    command: List[str] = ["shadergen", *argv]
    try:
        run(config_from_args(args), command)
    except ShaderGenError as exc:
        print(f"shadergen: ERROR: {exc}", file=sys.stderr)
        return 2
    return 0


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
