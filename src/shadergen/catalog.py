"""
Variant catalog: the complete, uniquely named set of shader compile jobs.

Every family below is a generator of CompileJob values; build_catalog()
collects them into an immutable, name-sorted Catalog. Axes and the
exceptions to the cross-products are tables, so adding a type or a
capability does not touch control flow.
"""

from __future__ import annotations

import itertools
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple

from .config import Capabilities
from .errors import ShaderGenError


TYPE_NAMES: Tuple[str, ...] = (
    "f32",
    "f16",
    "q4_0",
    "q4_1",
    "q5_0",
    "q5_1",
    "q8_0",
    "q2_k",
    "q3_k",
    "q4_k",
    "q5_k",
    "q6_k",
    "iq1_s",
    "iq1_m",
    "iq2_xxs",
    "iq2_xs",
    "iq2_s",
    "iq3_xxs",
    "iq3_s",
    "iq4_xs",
    "iq4_nl",
    "mxfp4",
    "bf16",
)

FLOAT_TYPES = ("f32", "f16", "bf16")
LEGACY_QUANTS = ("q4_0", "q4_1", "q5_0", "q5_1", "q8_0")

# Quant types whose matmul A loads are 8 or 4 elements wide; all others load 2.
WIDE_LOAD_QUANTS = ("q4_0", "q4_1", "iq1_s", "iq1_m", "iq2_xxs", "iq2_xs", "iq2_s")
MEDIUM_LOAD_QUANTS = ("q5_0", "q5_1", "q8_0", "iq3_xxs", "iq3_s", "iq4_nl", "mxfp4")

TARGET_ENV_DEFAULT = "--target-env=vulkan1.2"
TARGET_ENV_COOPMAT2 = "--target-env=vulkan1.3"

GLSL_TYPES = {
    "f32": "float",
    "f16": "float16_t",
    "i32": "int",
}

F16_ACC_MAX = '"float16_t(65504.0)"'


def is_quantized_type(type_name: str) -> bool:
    return type_name not in FLOAT_TYPES


def is_legacy_quant(type_name: str) -> bool:
    return type_name in LEGACY_QUANTS


def is_k_quant(type_name: str) -> bool:
    return type_name.endswith("_k")


def data_a_key(type_name: str) -> str:
    return f"DATA_A_{type_name.upper()}"


def merge_defines(*sources: Mapping[str, str]) -> Dict[str, str]:
    """Merge define mappings; a later source wins on duplicate keys."""
    merged: Dict[str, str] = {}
    for source in sources:
        merged.update(source)
    return merged


@dataclass(frozen=True)
class Variant:
    """Structured identity of one compiled shader.

    ``name`` is the only place the display name is derived; the build graph,
    the embedded symbols and the runtime dispatch tables all key on it.
    """

    base: str
    fp16: bool = True
    coopmat: bool = False
    coopmat2: bool = False
    f16acc: bool = False

    @property
    def name(self) -> str:
        name = self.base
        if self.f16acc:
            name += "_f16acc"
        if self.coopmat:
            name += "_cm1"
        if self.coopmat2:
            name += "_cm2"
        elif not self.fp16:
            name += "_fp32"
        return name


@dataclass(frozen=True)
class Rule:
    reason: str
    matches: Callable[..., bool]


def first_match(rules: Sequence[Rule], *args: object) -> Optional[Rule]:
    for rule in rules:
        if rule.matches(*args):
            return rule
    return None


# spirv-opt miscompiles these; they are compiled without -O.
NO_OPTIMIZATION_RULES: Tuple[Rule, ...] = (
    Rule("cooperative matrix (cm1) shaders", lambda v: v.coopmat),
    Rule("bf16 shaders", lambda v: "bf16" in v.name),
)


@dataclass(frozen=True)
class CompileJob:
    variant: Variant
    family: str
    source: str
    input_path: Path
    output_path: Path
    defines: Tuple[Tuple[str, str], ...]
    target_env: str
    optimize: bool
    extra_flags: Tuple[str, ...] = ()

    @property
    def name(self) -> str:
        return self.variant.name

    def define_map(self) -> Dict[str, str]:
        return dict(self.defines)

    def flags(self) -> List[str]:
        flags = ["-fshader-stage=compute", self.target_env]
        if self.optimize:
            flags.append("-O")
        flags.extend(self.extra_flags)
        flags.extend(f"-D{key}={value}" for key, value in self.defines)
        return flags


@dataclass(frozen=True)
class LookupTable:
    """Fixed-shape table of job names, flattened row-major (last axis fastest)."""

    name: str
    shape: Tuple[int, ...]
    axes: Tuple[str, ...]
    entries: Tuple[str, ...]

    def __post_init__(self) -> None:
        if len(self.axes) != len(self.shape):
            raise ShaderGenError(f"lookup table {self.name}: {len(self.axes)} axes for shape {self.shape}")
        size = 1
        for extent in self.shape:
            size *= extent
        if len(self.entries) != size:
            raise ShaderGenError(f"lookup table {self.name}: {len(self.entries)} entries for shape {self.shape}")

    def indices(self) -> Iterator[Tuple[int, ...]]:
        return itertools.product(*(range(extent) for extent in self.shape))

    def entry(self, *index: int) -> str:
        if len(index) != len(self.shape):
            raise IndexError(f"{self.name}: expected {len(self.shape)} indices, got {len(index)}")
        flat = 0
        for i, extent in zip(index, self.shape):
            if not 0 <= i < extent:
                raise IndexError(f"{self.name}: index {index} out of range for shape {self.shape}")
            flat = flat * extent + i
        return self.entries[flat]


class Catalog:
    def __init__(self, jobs: Iterable[CompileJob], tables: Iterable[LookupTable] = ()) -> None:
        by_name: Dict[str, CompileJob] = {}
        for job in jobs:
            if job.name in by_name:
                raise ShaderGenError(f"duplicate compile job name: {job.name}")
            by_name[job.name] = job
        self._by_name = by_name
        self._jobs = tuple(sorted(by_name.values(), key=lambda job: job.name))

        tables = tuple(tables)
        table_names = set()
        for table in tables:
            if table.name in table_names:
                raise ShaderGenError(f"duplicate lookup table: {table.name}")
            table_names.add(table.name)
            missing = [entry for entry in table.entries if entry not in by_name]
            if missing:
                raise ShaderGenError(f"lookup table {table.name} names unknown jobs: {', '.join(missing)}")
        self._tables = tables

    @property
    def jobs(self) -> Tuple[CompileJob, ...]:
        return self._jobs

    @property
    def tables(self) -> Tuple[LookupTable, ...]:
        return self._tables

    def __len__(self) -> int:
        return len(self._jobs)

    def __iter__(self) -> Iterator[CompileJob]:
        return iter(self._jobs)

    def __contains__(self, name: object) -> bool:
        return name in self._by_name

    def get(self, name: str) -> Optional[CompileJob]:
        return self._by_name.get(name)

    def names(self) -> List[str]:
        return [job.name for job in self._jobs]

    def families(self) -> List[str]:
        return sorted({job.family for job in self._jobs})

    def output_paths(self) -> Dict[str, Path]:
        return {job.name: job.output_path for job in self._jobs}


@dataclass(frozen=True)
class _Context:
    capabilities: Capabilities
    type_names: Tuple[str, ...]
    input_dir: Path
    output_dir: Path

    def job(self, family: str, variant: Variant, source: str, defines: Mapping[str, str]) -> CompileJob:
        return CompileJob(
            variant=variant,
            family=family,
            source=source,
            input_path=self.input_dir / source,
            output_path=self.output_dir / f"{variant.name}.spv",
            defines=tuple(sorted(defines.items())),
            target_env=TARGET_ENV_COOPMAT2 if variant.coopmat2 else TARGET_ENV_DEFAULT,
            optimize=first_match(NO_OPTIMIZATION_RULES, variant) is None,
            extra_flags=("-g",) if self.capabilities.debug_info else (),
        )

    def shader(self, family: str, name: str, source: str, defines: Mapping[str, str]) -> CompileJob:
        return self.job(family, Variant(name), source, defines)


def _io(a: str, d: str, b: Optional[str] = None) -> Dict[str, str]:
    defines = {"A_TYPE": GLSL_TYPES[a]}
    if b is not None:
        defines["B_TYPE"] = GLSL_TYPES[b]
    defines["D_TYPE"] = GLSL_TYPES[d]
    return defines


def _rte(rte: bool) -> Dict[str, str]:
    return {"RTE16": "1" if rte else "0"}


BASE_DEFINES: Dict[str, str] = {"FLOAT_TYPE": "float"}


# Matrix multiply ------------------------------------------------------------


@dataclass(frozen=True)
class MatmulIdMode:
    family: str
    shader_name: str
    defines: Tuple[Tuple[str, str], ...] = ()


MATMUL_ID_MODES: Tuple[MatmulIdMode, ...] = (
    MatmulIdMode("matmul", "matmul"),
    MatmulIdMode("matmul_id", "matmul_id", (("MUL_MAT_ID", "1"),)),
    MatmulIdMode("matmul_id", "matmul_id_subgroup", (("MUL_MAT_ID", "1"), ("MUL_MAT_ID_USE_SUBGROUPS", "1"))),
)


@dataclass(frozen=True)
class MatmulPath:
    fp16: bool
    coopmat: bool = False
    coopmat2: bool = False
    f16acc: bool = False
    requires: Optional[str] = None

    @property
    def cooperative(self) -> bool:
        return self.coopmat or self.coopmat2

    def variant(self, base: str) -> Variant:
        return Variant(base, fp16=self.fp16, coopmat=self.coopmat, coopmat2=self.coopmat2, f16acc=self.f16acc)


MATMUL_PATHS: Tuple[MatmulPath, ...] = (
    MatmulPath(fp16=False),
    MatmulPath(fp16=True),
    MatmulPath(fp16=True, f16acc=True),
    MatmulPath(fp16=True, coopmat=True, requires="coopmat"),
    MatmulPath(fp16=True, coopmat=True, f16acc=True, requires="coopmat"),
    MatmulPath(fp16=True, coopmat2=True, requires="coopmat2"),
    MatmulPath(fp16=True, coopmat2=True, f16acc=True, requires="coopmat2"),
)


@dataclass(frozen=True)
class MatmulOperand:
    suffix: str
    a_type: str
    b_type: str
    # False: the unaligned variant leaves LOAD_VEC_A unset.
    unaligned_load_vec: bool = True


def _matmul_operands(type_names: Sequence[str]) -> Iterator[MatmulOperand]:
    yield MatmulOperand("f32_f16", "f32", "f16", unaligned_load_vec=False)
    yield MatmulOperand("f16", "f16", "f16", unaligned_load_vec=False)
    yield MatmulOperand("bf16", "bf16", "bf16")
    for type_name in type_names:
        if type_name == "bf16":
            continue
        yield MatmulOperand(f"{type_name}_f32", type_name, "f32")
        if type_name not in ("f16", "f32"):
            yield MatmulOperand(f"{type_name}_f16", type_name, "f16")


MATMUL_EXCLUSIONS: Tuple[Rule, ...] = (
    Rule(
        "id-gather without subgroups has no cooperative matrix path",
        lambda ctx, mode, path, op: mode.shader_name == "matmul_id" and path.cooperative,
    ),
    Rule(
        "bf16 operands only when bf16 is a requested type",
        lambda ctx, mode, path, op: op.a_type == "bf16" and "bf16" not in ctx.type_names,
    ),
    Rule(
        "bf16 cooperative matrix shaders need native bfloat16 compiler support",
        lambda ctx, mode, path, op: op.a_type == "bf16" and path.cooperative and not ctx.capabilities.bfloat16,
    ),
    Rule(
        "cooperative matrix 2 has no f32 B operand variants",
        lambda ctx, mode, path, op: path.coopmat2 and op.b_type == "f32",
    ),
)

MATMUL_INTEGER_DOT_EXCLUSIONS: Tuple[Rule, ...] = (
    Rule("integer dot needs compiler support", lambda ctx, mode, path, t: not ctx.capabilities.integer_dot),
    Rule("integer dot only for legacy quants", lambda ctx, mode, path, t: not is_legacy_quant(t)),
    Rule("integer dot has no id-gather variant", lambda ctx, mode, path, t: mode.shader_name != "matmul"),
    Rule("integer dot has no cooperative matrix variant", lambda ctx, mode, path, t: path.cooperative),
)


def matmul_float_type(type_name: str, path: MatmulPath) -> str:
    if type_name == "bf16":
        # scalar path promotes bf16 to float
        return "bfloat16_t" if path.cooperative else "float"
    return "float16_t" if path.coopmat2 or path.fp16 else "float"


def quant_load_vec(type_name: str) -> str:
    if type_name in WIDE_LOAD_QUANTS:
        return "8"
    if type_name in MEDIUM_LOAD_QUANTS:
        return "4"
    return "2"


def _matmul_base_defines(mode: MatmulIdMode, path: MatmulPath) -> Dict[str, str]:
    defines = {"FLOAT_TYPE_VEC2": "f16vec2" if path.coopmat2 or path.fp16 else "vec2"}
    defines.update(mode.defines)
    if path.fp16:
        defines["FLOAT16"] = "1"
    defines["ACC_TYPE"] = "float16_t" if path.f16acc else "float"
    if path.f16acc:
        defines["ACC_TYPE_MAX"] = F16_ACC_MAX
    if path.coopmat:
        defines["COOPMAT"] = "1"
    return defines


def _matmul_bf16_defines(path: MatmulPath, aligned: bool) -> Dict[str, str]:
    defines = {
        "FLOAT_TYPE": matmul_float_type("bf16", path),
        "TO_FLOAT_TYPE": "uintBitsToBFloat16EXT" if path.cooperative else "bf16_to_fp32",
        "DATA_A_BF16": "1",
        "D_TYPE": "float",
        "B_IS_FLOAT": "1",
        "DATA_B_BF16": "1",
    }
    if aligned:
        defines.update(
            LOAD_VEC_A="1" if path.coopmat2 else "4",
            LOAD_VEC_B="4",
            B_TYPE="bfloat16_t" if path.coopmat2 else "u16vec4",
            B_TYPE32="vec4",
            ALIGNED="1",
        )
    else:
        defines.update(LOAD_VEC_A="1", B_TYPE="bfloat16_t" if path.coopmat2 else "uint16_t")
    return defines


def _matmul_operand_defines(path: MatmulPath, operand: MatmulOperand, aligned: bool) -> Dict[str, str]:
    if operand.a_type == "bf16":
        return _matmul_bf16_defines(path, aligned)

    load_vec = "1" if path.coopmat2 else "8" if path.fp16 else "4"
    aligned_b_type_f32 = "float" if path.coopmat2 else "mat2x4" if path.fp16 else "vec4"
    aligned_b_type_f16 = "float16_t" if path.coopmat2 else "f16mat2x4" if path.fp16 else "f16vec4"
    b_is_f16 = operand.b_type == "f16"
    scalar_a = path.coopmat2 or not is_quantized_type(operand.a_type)

    defines = {
        "FLOAT_TYPE": matmul_float_type(operand.a_type, path),
        data_a_key(operand.a_type): "1",
        "D_TYPE": "float",
    }
    if aligned:
        defines.update(
            LOAD_VEC_A=load_vec if scalar_a else quant_load_vec(operand.a_type),
            LOAD_VEC_B=load_vec,
            B_TYPE=aligned_b_type_f16 if b_is_f16 else aligned_b_type_f32,
            B_TYPE32=aligned_b_type_f32,
            ALIGNED="1",
        )
    else:
        defines["B_TYPE"] = "float16_t" if b_is_f16 else "float"
        if operand.unaligned_load_vec:
            defines["LOAD_VEC_A"] = "1" if scalar_a else quant_load_vec(operand.a_type)
    return defines


def _matmul_jobs(ctx: _Context) -> Iterator[CompileJob]:
    for mode in MATMUL_ID_MODES:
        for path in MATMUL_PATHS:
            if path.requires is not None and not ctx.capabilities.enabled(path.requires):
                continue
            base = _matmul_base_defines(mode, path)
            source = "mul_mm_cm2.comp" if path.coopmat2 else "mul_mm.comp"

            for operand in _matmul_operands(ctx.type_names):
                if first_match(MATMUL_EXCLUSIONS, ctx, mode, path, operand) is not None:
                    continue
                for aligned in (False, True):
                    name = f"{mode.shader_name}_{operand.suffix}" + ("_aligned" if aligned else "")
                    defines = merge_defines(base, _matmul_operand_defines(path, operand, aligned))
                    yield ctx.job(mode.family, path.variant(name), source, defines)

            for type_name in ctx.type_names:
                if first_match(MATMUL_INTEGER_DOT_EXCLUSIONS, ctx, mode, path, type_name) is not None:
                    continue
                defines = merge_defines(
                    base,
                    {
                        "FLOAT_TYPE": matmul_float_type(type_name, path),
                        data_a_key(type_name): "1",
                        "D_TYPE": "float",
                    },
                )
                name = f"{mode.shader_name}_{type_name}_q8_1"
                yield ctx.job(mode.family, path.variant(name), "mul_mmq.comp", defines)


# Flash attention ------------------------------------------------------------

ATTENTION_EXCLUDED_TYPES = ("f32", "bf16")
ATTENTION_SCALAR_TYPES = ("f16", "q4_0", "q8_0")


@dataclass(frozen=True)
class AttentionPath:
    source: str
    coopmat: bool = False
    coopmat2: bool = False
    requires: Optional[str] = None
    # None means every attention type.
    types: Optional[Tuple[str, ...]] = None


ATTENTION_PATHS: Tuple[AttentionPath, ...] = (
    AttentionPath("flash_attn_cm2.comp", coopmat2=True, requires="coopmat2"),
    AttentionPath("flash_attn_cm1.comp", coopmat=True, requires="coopmat", types=ATTENTION_SCALAR_TYPES),
    AttentionPath("flash_attn.comp", types=ATTENTION_SCALAR_TYPES),
)


def attention_name(type_name: str) -> str:
    return f"flash_attn_f32_f16_{type_name}"


def _attention_jobs(ctx: _Context) -> Iterator[CompileJob]:
    for f16acc in (False, True):
        base = merge_defines(
            BASE_DEFINES,
            {
                "ACC_TYPE": "float16_t" if f16acc else "float",
                "ACC_TYPEV4": "f16vec4" if f16acc else "vec4",
            },
        )
        if f16acc:
            base["ACC_TYPE_MAX"] = F16_ACC_MAX

        for type_name in ctx.type_names:
            if type_name in ATTENTION_EXCLUDED_TYPES:
                continue
            for path in ATTENTION_PATHS:
                if path.requires is not None and not ctx.capabilities.enabled(path.requires):
                    continue
                if path.types is not None and type_name not in path.types:
                    continue
                defines = merge_defines(base, {"Q_TYPE": "float", "D_TYPE": "float"})
                if type_name != "f16":
                    upper = type_name.upper()
                    defines[data_a_key(type_name)] = "1"
                    defines["BLOCK_SIZE"] = f"QUANT_K_{upper}"
                    if path.coopmat2:
                        defines["DEQUANTFUNC"] = f"dequantFunc{upper}"
                if path.coopmat:
                    defines["COOPMAT"] = "1"
                variant = Variant(
                    attention_name(type_name),
                    fp16=True,
                    coopmat=path.coopmat,
                    coopmat2=path.coopmat2,
                    f16acc=f16acc,
                )
                yield ctx.job("attention", variant, path.source, defines)


# Matrix-vector --------------------------------------------------------------

MATVEC_B_TYPES: Tuple[Tuple[str, Dict[str, str]], ...] = (
    ("f32", {"B_TYPE": "float", "B_TYPE_VEC2": "vec2", "B_TYPE_VEC4": "vec4"}),
    ("f16", {"B_TYPE": "float16_t", "B_TYPE_VEC2": "f16vec2", "B_TYPE_VEC4": "f16vec4"}),
)

# Axis of the arr_dmmv tables, in index order.
MATVEC_REDUCTIONS: Tuple[Tuple[str, Dict[str, str]], ...] = (
    ("", {}),
    ("_subgroup", {"USE_SUBGROUP_ADD": "1"}),
    ("_subgroup_no_shmem", {"USE_SUBGROUP_ADD_NO_SHMEM": "1"}),
)


def matvec_name(type_name: str, b_type: str, reduction: int) -> str:
    return f"mul_mat_vec_{type_name}_{b_type}_f32{MATVEC_REDUCTIONS[reduction][0]}"


def matvec_source(type_name: str) -> str:
    if is_k_quant(type_name) or type_name.startswith(("iq1_", "iq2_", "iq3_")):
        return f"mul_mat_vec_{type_name}.comp"
    return "mul_mat_vec.comp"


def _matvec_jobs(ctx: _Context) -> Iterator[CompileJob]:
    for type_name in ctx.type_names:
        source = matvec_source(type_name)
        data_a = {data_a_key(type_name): "1"}
        for b_type, b_defines in MATVEC_B_TYPES:
            for index, (_suffix, reduction_defines) in enumerate(MATVEC_REDUCTIONS):
                defines = merge_defines(BASE_DEFINES, data_a, b_defines, {"D_TYPE": "float"}, reduction_defines)
                yield ctx.shader("matvec", matvec_name(type_name, b_type, index), source, defines)

        yield ctx.shader(
            "matvec",
            f"mul_mat_vec_id_{type_name}_f32",
            source,
            merge_defines(BASE_DEFINES, {"MUL_MAT_ID": "1"}, data_a, MATVEC_B_TYPES[0][1], {"D_TYPE": "float"}),
        )

        if ctx.capabilities.integer_dot and is_legacy_quant(type_name):
            for index, (_suffix, reduction_defines) in enumerate(MATVEC_REDUCTIONS):
                defines = merge_defines(
                    BASE_DEFINES,
                    data_a,
                    {"D_TYPE": "float", "FLOAT_TYPE": "float", "FLOAT_TYPE_VEC2": "vec2", "ACC_TYPE": "float"},
                    reduction_defines,
                )
                yield ctx.shader("matvec", matvec_name(type_name, "q8_1", index), "mul_mat_vecq.comp", defines)

    p021 = {"A_TYPE": "float16_t", "A_TYPE_VEC4": "f16vec4", "B_TYPE": "float", "B_TYPE_VEC4": "vec4", "D_TYPE": "float"}
    yield ctx.shader(
        "matvec",
        "mul_mat_vec_p021_f16_f32_subgroup_add",
        "mul_mat_vec_p021.comp",
        merge_defines(p021, {"USE_SUBGROUP_ADD": "1"}),
    )
    yield ctx.shader("matvec", "mul_mat_vec_p021_f16_f32", "mul_mat_vec_p021.comp", p021)
    yield ctx.shader("matvec", "mul_mat_vec_nc_f16_f32", "mul_mat_vec_nc.comp", p021)


# Element-wise ---------------------------------------------------------------

BINARY_OPS = ("add", "sub", "mul", "div", "add_rms")
BINARY_TABLE_AXES = ("src0_f16", "src1_f16", "dst_f16", "rte")
# Index 0 of every precision axis is f32, index 1 is f16.
PRECISION_SUFFIXES = ("_f32", "_f16")


def binary_op_name(op: str, src0_f16: int, src1_f16: int, dst_f16: int, rte: int) -> str:
    return (
        op
        + PRECISION_SUFFIXES[int(src0_f16)]
        + PRECISION_SUFFIXES[int(src1_f16)]
        + PRECISION_SUFFIXES[int(dst_f16)]
        + ("_rte" if rte else "")
    )


def _precision(f16: int) -> str:
    return "f16" if f16 else "f32"


def _elementwise_jobs(ctx: _Context) -> Iterator[CompileJob]:
    for op in BINARY_OPS:
        source = "add.comp" if op == "add_rms" else f"{op}.comp"
        for src0_f16, src1_f16, dst_f16, rte in itertools.product((0, 1), repeat=4):
            defines = merge_defines(
                _io(_precision(src0_f16), _precision(dst_f16), _precision(src1_f16)),
                {"FLOAT_TYPE": "float", "ADD_RMS": "1" if op == "add_rms" else "0"},
                _rte(bool(rte)),
            )
            yield ctx.shader("elementwise", binary_op_name(op, src0_f16, src1_f16, dst_f16, rte), source, defines)

    for op in ("sub", "mul", "div", "acc"):
        yield ctx.shader("elementwise", f"{op}_f32", f"{op}.comp", merge_defines(_io("f32", "f32", "f32"), BASE_DEFINES))

    for name, source in (
        ("scale", "scale.comp"),
        ("sqr", "square.comp"),
        ("sqrt", "sqrt.comp"),
        ("sin", "sin.comp"),
        ("cos", "cos.comp"),
        ("clamp", "clamp.comp"),
    ):
        yield ctx.shader("elementwise", f"{name}_f32", source, merge_defines(_io("f32", "f32"), BASE_DEFINES))

    yield ctx.shader("elementwise", "add_id_f32", "add_id.comp", merge_defines(BASE_DEFINES, _io("f32", "f32", "f32")))

    for name, add_rms in (("multi_add_f32", "0"), ("multi_add_rms_f32", "1")):
        defines = merge_defines(_io("f32", "f32", "f32"), BASE_DEFINES, _rte(True), {"ADD_RMS": add_rms})
        yield ctx.shader("elementwise", name, "multi_add.comp", defines)


# Activations ----------------------------------------------------------------

UNARY_ACTIVATIONS = (
    "exp",
    "gelu",
    "gelu_erf",
    "gelu_quick",
    "silu",
    "relu",
    "tanh",
    "sigmoid",
    "hardsigmoid",
    "hardswish",
)
GATED_ACTIVATIONS = ("geglu", "reglu", "swiglu", "swiglu_oai", "geglu_erf", "geglu_quick")


def _activation_jobs(ctx: _Context) -> Iterator[CompileJob]:
    for op in UNARY_ACTIVATIONS:
        for precision in ("f16", "f32"):
            yield ctx.shader("activation", f"{op}_{precision}", f"{op}.comp", _io(precision, precision))

    for rte in (False, True):
        suffix = "_rte" if rte else ""
        for op in GATED_ACTIVATIONS:
            for precision in ("f16", "f32"):
                defines = merge_defines(_io(precision, precision), _rte(rte))
                yield ctx.shader("activation", f"{op}_{precision}{suffix}", f"{op}.comp", defines)

    yield ctx.shader("activation", "leaky_relu_f32", "leaky_relu.comp", _io("f32", "f32"))
    yield ctx.shader("activation", "silu_back_f32", "silu_back.comp", _io("f32", "f32", "f32"))


# Normalization --------------------------------------------------------------


def _normalization_jobs(ctx: _Context) -> Iterator[CompileJob]:
    yield ctx.shader("normalization", "norm_f32", "norm.comp", merge_defines(BASE_DEFINES, _io("f32", "f32")))
    yield ctx.shader("normalization", "group_norm_f32", "group_norm.comp", merge_defines(BASE_DEFINES, _io("f32", "f32")))
    for name in ("rms_norm", "rms_norm_partials", "rms_norm_back"):
        yield ctx.shader("normalization", f"{name}_f32", f"{name}.comp", merge_defines(BASE_DEFINES, _io("f32", "f32", "f32")))
    yield ctx.shader("normalization", "l2_norm_f32", "l2_norm.comp", merge_defines(BASE_DEFINES, _io("f32", "f32")))

    yield ctx.shader("normalization", "soft_max_f32", "soft_max.comp", merge_defines(BASE_DEFINES, _io("f32", "f32", "f32")))
    yield ctx.shader("normalization", "soft_max_f32_f16", "soft_max.comp", merge_defines(BASE_DEFINES, _io("f32", "f32", "f16")))
    yield ctx.shader(
        "normalization", "soft_max_back_f32", "soft_max_back.comp", merge_defines(BASE_DEFINES, _io("f32", "f32", "f32"))
    )
    yield ctx.shader("normalization", "diag_mask_inf_f32", "diag_mask_inf.comp", _io("f32", "f32"))


# Copy / data movement -------------------------------------------------------

OPTIMIZATION_ERROR_WORKAROUND = {"OPTIMIZATION_ERROR_WORKAROUND": "1"}
BF16_DESTINATION = {"D_TYPE": "uint16_t", "DATA_D_BF16": "1"}
SET_ROWS_TYPES = ("f32", "f16", "bf16", "q4_0", "q4_1", "q5_0", "q5_1", "q8_0", "iq4_nl")


def _copy_jobs(ctx: _Context) -> Iterator[CompileJob]:
    for prefix, source in (("cpy", "copy.comp"), ("contig_cpy", "contig_copy.comp")):
        yield ctx.shader("copy", f"{prefix}_f32_f32", source, _io("f32", "f32"))
        yield ctx.shader("copy", f"{prefix}_f32_f16", source, _io("f32", "f16"))
        yield ctx.shader("copy", f"{prefix}_f16_f16", source, merge_defines(_io("f16", "f16"), OPTIMIZATION_ERROR_WORKAROUND))
        yield ctx.shader("copy", f"{prefix}_f16_f32", source, merge_defines(_io("f16", "f32"), OPTIMIZATION_ERROR_WORKAROUND))
        yield ctx.shader("copy", f"{prefix}_f32_bf16", source, merge_defines(_io("f32", "f32"), BF16_DESTINATION))
        yield ctx.shader("copy", f"{prefix}_f32_i32", source, _io("f32", "i32"))
        yield ctx.shader("copy", f"{prefix}_i32_f32", source, _io("i32", "f32"))

    for type_name in SET_ROWS_TYPES:
        defines = {
            "SET_ROWS": "1",
            data_a_key(type_name): "1",
            "B_TYPE": "uvec2",
            "D_TYPE": "float",
            "FLOAT_TYPE": "float",
        }
        yield ctx.shader("copy", f"set_rows_{type_name}", "copy_to_quant.comp", defines)
        yield ctx.shader("copy", f"set_rows_{type_name}_rte", "copy_to_quant.comp", merge_defines(defines, {"RTE16": "1"}))

    for type_name in ctx.type_names:
        if is_k_quant(type_name):
            continue
        source = "get_rows_quant.comp" if is_quantized_type(type_name) else "get_rows.comp"
        data_a = {data_a_key(type_name): "1", "B_TYPE": "int"}
        defines = merge_defines(BASE_DEFINES, data_a, {"D_TYPE": "float16_t"})
        if type_name == "f16":
            defines.update(OPTIMIZATION_ERROR_WORKAROUND)
        yield ctx.shader("copy", f"get_rows_{type_name}", source, defines)
        yield ctx.shader("copy", f"get_rows_{type_name}_f32", source, merge_defines(BASE_DEFINES, data_a, {"D_TYPE": "float"}))

    yield ctx.shader("copy", "repeat_f32", "repeat.comp", _io("f32", "f32"))
    yield ctx.shader("copy", "repeat_back_f32", "repeat_back.comp", _io("f32", "f32"))
    yield ctx.shader("copy", "pad_f32", "pad.comp", _io("f32", "f32"))
    yield ctx.shader("copy", "concat_f32", "concat.comp", _io("f32", "f32", "f32"))
    yield ctx.shader("copy", "concat_f16", "concat.comp", merge_defines(_io("f16", "f16", "f16"), OPTIMIZATION_ERROR_WORKAROUND))
    yield ctx.shader("copy", "concat_i32", "concat.comp", _io("i32", "i32", "i32"))
    yield ctx.shader("copy", "upscale_f32", "upscale.comp", _io("f32", "f32", "f32"))
    yield ctx.shader("copy", "roll_f32", "roll.comp", merge_defines(BASE_DEFINES, _io("f32", "f32")))


# Quantize / dequantize ------------------------------------------------------

QUANT_COPY_TYPES = ("q4_0", "q4_1", "q5_0", "q5_1", "q8_0", "iq4_nl")


def _quantize_jobs(ctx: _Context) -> Iterator[CompileJob]:
    for type_name in ctx.type_names:
        if type_name in ("f16", "bf16"):
            continue
        defines = merge_defines(BASE_DEFINES, {data_a_key(type_name): "1", "D_TYPE": "float16_t"})
        yield ctx.shader("quantize", f"dequant_{type_name}", f"dequant_{type_name}.comp", defines)

    for type_name in QUANT_COPY_TYPES:
        defines = {data_a_key(type_name): "1", "D_TYPE": "float", "FLOAT_TYPE": "float"}
        yield ctx.shader("quantize", f"cpy_f32_{type_name}", "copy_to_quant.comp", defines)
        yield ctx.shader("quantize", f"cpy_f32_{type_name}_rte", "copy_to_quant.comp", merge_defines(defines, {"RTE16": "1"}))
        yield ctx.shader("quantize", f"cpy_{type_name}_f32", "copy_from_quant.comp", defines)

    for x4 in (False, True):
        for subgroups in (False, True):
            name = "quantize_q8_1" + ("_x4" if x4 else "") + ("_subgroup" if subgroups else "")
            defines: Dict[str, str] = {}
            if x4:
                defines["QBLOCK_X4"] = "1"
            if subgroups:
                defines["USE_SUBGROUPS"] = "1"
            yield ctx.shader("quantize", name, "quantize_q8_1.comp", defines)


# Rotary position embedding --------------------------------------------------

ROPE_MODES = ("norm", "neox", "multi", "vision")


def _rope_jobs(ctx: _Context) -> Iterator[CompileJob]:
    for mode in ROPE_MODES:
        source = f"rope_{mode}.comp"
        yield ctx.shader("rope", f"rope_{mode}_f32", source, _io("f32", "f32"))
        yield ctx.shader("rope", f"rope_{mode}_f16", source, _io("f16", "f16"))
        yield ctx.shader("rope", f"rope_{mode}_f16_rte", source, merge_defines(_io("f16", "f16"), {"RTE16": "1"}))


# Convolution ----------------------------------------------------------------


def _convolution_jobs(ctx: _Context) -> Iterator[CompileJob]:
    for name in ("im2col", "im2col_3d"):
        source = f"{name}.comp"
        yield ctx.shader("convolution", f"{name}_f32", source, merge_defines(BASE_DEFINES, _io("f32", "f32")))
        yield ctx.shader("convolution", f"{name}_f32_f16", source, merge_defines(BASE_DEFINES, _io("f32", "f16")))
        yield ctx.shader(
            "convolution", f"{name}_f32_f16_rte", source, merge_defines(BASE_DEFINES, _io("f32", "f16"), {"RTE16": "1"})
        )

    yield ctx.shader("convolution", "conv_transpose_1d_f32", "conv_transpose_1d.comp", _io("f32", "f32", "f32"))
    yield ctx.shader("convolution", "pool2d_f32", "pool2d.comp", merge_defines(BASE_DEFINES, _io("f32", "f32")))

    for a_type, name in (("f32", "conv2d_f32"), ("f16", "conv2d_f16_f32")):
        conv = merge_defines(_io(a_type, "f32", "f32"), {"USE_COLLECTIVES": "1"})
        yield ctx.shader("convolution", f"{name}_unroll", "conv2d_mm.comp", merge_defines(conv, {"UNROLL": "[[unroll]]"}))
        yield ctx.shader("convolution", name, "conv2d_mm.comp", merge_defines(conv, {"UNROLL": ""}))
        if ctx.capabilities.coopmat2:
            defines = merge_defines(conv, {"UNROLL": "[[unroll]]", "COOPMAT2": "1"})
            yield ctx.job("convolution", Variant(name, coopmat2=True), "conv2d_mm.comp", defines)

    for a_type, suffix in (("f32", "f32"), ("f16", "f16_f32")):
        for layout in ("whcn", "cwhn"):
            defines = merge_defines(BASE_DEFINES, _io(a_type, "f32", "f32"), {layout.upper(): "1"})
            yield ctx.shader("convolution", f"conv2d_dw_{layout}_{suffix}", "conv2d_dw.comp", defines)


# Reductions -----------------------------------------------------------------


def _reduction_jobs(ctx: _Context) -> Iterator[CompileJob]:
    yield ctx.shader("reduction", "argsort_f32", "argsort.comp", {"A_TYPE": "float"})
    yield ctx.shader("reduction", "argmax_f32", "argmax.comp", merge_defines(BASE_DEFINES, _io("f32", "i32")))
    yield ctx.shader("reduction", "sum_rows_f32", "sum_rows.comp", merge_defines(BASE_DEFINES, _io("f32", "f32")))
    yield ctx.shader("reduction", "count_equal_i32", "count_equal.comp", merge_defines(BASE_DEFINES, _io("i32", "i32", "i32")))
    yield ctx.shader("reduction", "split_k_reduce", "mul_mat_split_k_reduce.comp", {})
    yield ctx.shader("reduction", "fa_split_k_reduce", "flash_attn_split_k_reduce.comp", {})


def _misc_jobs(ctx: _Context) -> Iterator[CompileJob]:
    yield ctx.shader(
        "misc", "timestep_embedding_f32", "timestep_embedding.comp", merge_defines(BASE_DEFINES, _io("f32", "f32"))
    )
    yield ctx.shader("misc", "rwkv_wkv6_f32", "wkv6.comp", merge_defines(BASE_DEFINES, {"A_TYPE": "float"}))
    yield ctx.shader("misc", "rwkv_wkv7_f32", "wkv7.comp", merge_defines(BASE_DEFINES, {"A_TYPE": "float"}))
    yield ctx.shader("misc", "opt_step_adamw_f32", "opt_step_adamw.comp", merge_defines(BASE_DEFINES, {"A_TYPE": "float"}))
    yield ctx.shader("misc", "opt_step_sgd_f32", "opt_step_sgd.comp", merge_defines(BASE_DEFINES, {"A_TYPE": "float"}))


FAMILY_GENERATORS: Tuple[Callable[[_Context], Iterator[CompileJob]], ...] = (
    _matmul_jobs,
    _attention_jobs,
    _matvec_jobs,
    _elementwise_jobs,
    _activation_jobs,
    _normalization_jobs,
    _copy_jobs,
    _quantize_jobs,
    _rope_jobs,
    _convolution_jobs,
    _reduction_jobs,
    _misc_jobs,
)


# Lookup tables --------------------------------------------------------------


def matvec_table_b_types(capabilities: Capabilities) -> Tuple[str, ...]:
    if capabilities.integer_dot:
        return ("f16", "f32", "q8_1")
    return ("f16", "f32")


def _lookup_tables(ctx: _Context) -> Iterator[LookupTable]:
    for op in BINARY_OPS:
        yield LookupTable(
            name=op,
            shape=(2, 2, 2, 2),
            axes=BINARY_TABLE_AXES,
            entries=tuple(binary_op_name(op, *index) for index in itertools.product((0, 1), repeat=4)),
        )

    for b_type in matvec_table_b_types(ctx.capabilities):
        for type_name in ctx.type_names:
            if b_type == "q8_1" and not is_legacy_quant(type_name):
                continue
            yield LookupTable(
                name=f"arr_dmmv_{type_name}_{b_type}_f32",
                shape=(len(MATVEC_REDUCTIONS),),
                axes=("reduction",),
                entries=tuple(matvec_name(type_name, b_type, i) for i in range(len(MATVEC_REDUCTIONS))),
            )


def build_catalog(
    capabilities: Optional[Capabilities] = None,
    *,
    type_names: Sequence[str] = TYPE_NAMES,
    input_dir: Path = Path("."),
    output_dir: Path = Path("."),
) -> Catalog:
    unknown = [t for t in type_names if t not in TYPE_NAMES]
    if unknown:
        raise ShaderGenError(f"unknown type names: {', '.join(unknown)}")

    ctx = _Context(
        capabilities=capabilities or Capabilities(),
        type_names=tuple(type_names),
        input_dir=Path(input_dir),
        output_dir=Path(output_dir),
    )
    jobs: List[CompileJob] = []
    for generate in FAMILY_GENERATORS:
        jobs.extend(generate(ctx))
    return Catalog(jobs, _lookup_tables(ctx))
