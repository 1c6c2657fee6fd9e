import io
import json
import os
import sys
import tempfile
import unittest
from contextlib import redirect_stderr, redirect_stdout
from pathlib import Path
from subprocess import PIPE, run

from shadergen.cli import main

SRC_DIR = Path(__file__).resolve().parents[1] / "src"


def _main(argv):
    out, err = io.StringIO(), io.StringIO()
    with redirect_stdout(out), redirect_stderr(err):
        code = main(argv)
    return code, out.getvalue(), err.getvalue()


class TestCli(unittest.TestCase):
    def setUp(self):
        self._td = tempfile.TemporaryDirectory()
        self.addCleanup(self._td.cleanup)
        self.root = Path(self._td.name)
        self.input_dir = self.root / "shaders"
        self.input_dir.mkdir()
        self.output_dir = self.root / "spv"
        self.hpp = self.root / "gen" / "vulkan-shaders.hpp"
        self.cpp = self.root / "gen" / "vulkan-shaders.cpp"
        self.cmake = self.root / "build" / "shaders" / "CMakeLists.txt"

    def _args(self, *extra):
        return [
            "--glslc",
            "glslc",
            "--input-dir",
            str(self.input_dir),
            "--output-dir",
            str(self.output_dir),
            "--target-hpp",
            str(self.hpp),
            "--target-cpp",
            str(self.cpp),
            *extra,
        ]

    def test_no_embed_requires_cmake_target(self):
        code, _, err = _main(self._args("--no-embed"))
        self.assertEqual(code, 2)
        self.assertIn("shadergen: ERROR: --no-embed requires --target-cmake to be specified", err)

    def test_missing_input_directory(self):
        code, _, err = _main(["--input-dir", str(self.root / "nope"), "--output-dir", str(self.output_dir)])
        self.assertEqual(code, 2)
        self.assertIn("Input directory does not exist", err)

    def test_malformed_capability_file(self):
        caps = self.root / "caps.json"
        caps.write_text(json.dumps({"coopmat": "yes"}), encoding="utf-8")
        code, _, err = _main(self._args("--capabilities", str(caps)))
        self.assertEqual(code, 2)
        self.assertIn("must be true or false", err)

    def test_usage_error(self):
        code, _, _ = _main(["--bogus"])
        self.assertEqual(code, 2)

    def test_embed_mode(self):
        self.hpp.parent.mkdir()
        self.output_dir.mkdir()
        (self.output_dir / "norm_f32.spv").write_bytes(b"\x07\x23\x02\x03")
        code, out, err = _main(self._args())
        self.assertEqual(code, 0, msg=err)
        self.assertIn("shadergen: generating", out)
        self.assertIn("const uint64_t norm_f32_len = 4;", self.hpp.read_text(encoding="utf-8"))
        self.assertIn("0x7,0x23,0x2,0x3,", self.cpp.read_text(encoding="utf-8"))
        self.assertFalse(self.cmake.exists())

    def test_build_graph_mode(self):
        caps = self.root / "caps.json"
        caps.write_text(json.dumps({"coopmat2": True}), encoding="utf-8")
        code, _, err = _main(self._args("--target-cmake", str(self.cmake), "--integer-dot", "--capabilities", str(caps)))
        self.assertEqual(code, 0, msg=err)
        self.assertTrue(self.output_dir.is_dir())
        self.assertFalse(self.hpp.exists())

        text = self.cmake.read_text(encoding="utf-8")
        self.assertIn('"-m" "shadergen"', text)
        self.assertIn('"--coopmat2" "--integer-dot"', text)
        self.assertIn("matmul_q4_0_f16_cm2", text)
        self.assertIn("--target-env=vulkan1.3", text)
        self.assertIn("Embedding Vulkan shaders into C++ source", text)

    def test_no_embed_mode(self):
        self.hpp.parent.mkdir()
        code, _, err = _main(self._args("--target-cmake", str(self.cmake), "--no-embed"))
        self.assertEqual(code, 0, msg=err)

        text = self.cmake.read_text(encoding="utf-8")
        self.assertNotIn("Embedding Vulkan shaders", text)
        self.assertIn(f'  "{(self.output_dir.resolve() / "norm_f32.spv").as_posix()}"', text)

        hdr = self.hpp.read_text(encoding="utf-8")
        self.assertIn("#define VK_SHADER_DIR", hdr)
        self.assertIn('inline constexpr char const * norm_f32_data = "norm_f32.spv";', hdr)

    def test_relative_paths_become_absolute(self):
        cwd = os.getcwd()
        os.chdir(self.root)
        self.addCleanup(os.chdir, cwd)
        (self.input_dir / "norm.comp").write_text("void main() {}\n", encoding="utf-8")

        code, _, err = _main(
            [
                "--input-dir",
                "shaders",
                "--output-dir",
                "build/spv",
                "--target-hpp",
                "build/vulkan-shaders.hpp",
                "--target-cpp",
                "build/vulkan-shaders.cpp",
                "--target-cmake",
                "build/shaders/CMakeLists.txt",
            ]
        )
        self.assertEqual(code, 0, msg=err)

        root = self.root.resolve()
        text = (root / "build" / "shaders" / "CMakeLists.txt").read_text(encoding="utf-8")
        rules = [line for line in text.splitlines() if line.startswith("compile_shader(")]
        self.assertTrue(rules)
        for line in rules:
            _name, in_file, out_file = line[len("compile_shader(") :].split(" ")[:3]
            self.assertTrue(Path(in_file.strip('"')).is_absolute(), msg=line)
            self.assertTrue(Path(out_file.strip('"')).is_absolute(), msg=line)

        norm = next(line for line in rules if line.startswith("compile_shader(norm_f32 "))
        self.assertIn(f'"{(root / "shaders" / "norm.comp").as_posix()}"', norm)
        self.assertIn(f'"{(root / "build" / "spv" / "norm_f32.spv").as_posix()}"', norm)
        self.assertIn(f'"--input-dir" "{(root / "shaders").as_posix()}"', text)
        self.assertIn(f'"--target-hpp" "{(root / "build" / "vulkan-shaders.hpp").as_posix()}"', text)

    def test_rerun_keeps_cmake_file(self):
        args = self._args("--target-cmake", str(self.cmake))
        self.assertEqual(_main(args)[0], 0)
        os.utime(self.cmake, (1_000_000, 1_000_000))
        self.assertEqual(_main(args)[0], 0)
        self.assertEqual(self.cmake.stat().st_mtime, 1_000_000)

    def test_module_entry_point(self):
        env = dict(os.environ)
        env["PYTHONPATH"] = os.pathsep.join(p for p in (str(SRC_DIR), env.get("PYTHONPATH", "")) if p)
        self.hpp.parent.mkdir()
        proc = run(
            [sys.executable, "-m", "shadergen", *self._args()],
            stdout=PIPE,
            stderr=PIPE,
            encoding="utf-8",
            env=env,
        )
        self.assertEqual(proc.returncode, 0, msg=proc.stderr)
        self.assertTrue(self.hpp.exists())
        self.assertTrue(self.cpp.exists())

        proc = run(
            [sys.executable, "-m", "shadergen", "--input-dir", str(self.root / "nope")],
            stdout=PIPE,
            stderr=PIPE,
            encoding="utf-8",
            env=env,
        )
        self.assertEqual(proc.returncode, 2)
        self.assertIn("shadergen: ERROR:", proc.stderr)


if __name__ == "__main__":
    unittest.main()
