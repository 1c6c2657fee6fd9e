import io
import os
import re
import tempfile
import unittest
from contextlib import redirect_stderr
from pathlib import Path

from shadergen.catalog import build_catalog
from shadergen.embed import format_byte_literal, read_artifacts, write_embed_files

_ARRAY_RE = re.compile(r"const unsigned char (\w+)_data\[(\d+)\] = \{\n(.*?)\n\};", re.DOTALL)


def _parse_arrays(source: str):
    arrays = {}
    for match in _ARRAY_RE.finditer(source):
        body = match.group(3)
        values = [int(tok, 16) for tok in body.replace("\n", "").split(",") if tok]
        arrays[match.group(1)] = (int(match.group(2)), bytes(values))
    return arrays


class TestEmbed(unittest.TestCase):
    def setUp(self):
        self._td = tempfile.TemporaryDirectory()
        self.root = Path(self._td.name)
        self.out = self.root / "spv"
        self.out.mkdir()
        self.catalog = build_catalog(type_names=("f32", "q4_0"), output_dir=self.out)
        self.hpp = self.root / "gen" / "shaders.hpp"
        self.cpp = self.root / "gen" / "shaders.cpp"
        self.hpp.parent.mkdir()

    def tearDown(self):
        self._td.cleanup()

    def _artifact(self, name: str, data: bytes) -> None:
        (self.out / f"{name}.spv").write_bytes(data)

    def test_byte_literal_wraps_twelve_per_line(self):
        self.assertEqual(
            format_byte_literal(bytes(range(14))),
            "0x0,0x1,0x2,0x3,0x4,0x5,0x6,0x7,0x8,0x9,0xa,0xb,\n0xc,0xd,",
        )
        self.assertEqual(format_byte_literal(b"\xff"), "0xff,")

    def test_embeds_existing_artifacts(self):
        blob = bytes((i * 37) % 256 for i in range(30))
        self._artifact("add_f32_f32_f32", blob)
        self._artifact("mul_mat_vec_q4_0_f32_f32", b"\x03\x02\x23\x07")
        self._artifact("norm_f32", b"")

        write_embed_files(self.catalog, self.hpp, self.cpp, no_embed=False, output_dir=self.out)
        hdr = self.hpp.read_text(encoding="utf-8")
        src = self.cpp.read_text(encoding="utf-8")

        self.assertTrue(hdr.startswith("// AUTO-GENERATED by shadergen; do not edit manually.\n#include <cstdint>\n"))
        self.assertIn('#include "shaders.hpp"', src)
        self.assertIn("extern const unsigned char add_f32_f32_f32_data[30];", hdr)
        self.assertIn("const uint64_t add_f32_f32_f32_len = 30;", hdr)
        self.assertNotIn("norm_f32_data", hdr)
        self.assertNotIn("VK_SHADER_DIR", hdr)

        arrays = _parse_arrays(src)
        self.assertEqual(sorted(arrays), ["add_f32_f32_f32", "mul_mat_vec_q4_0_f32_f32"])
        self.assertEqual(arrays["add_f32_f32_f32"], (30, blob))
        self.assertEqual(arrays["mul_mat_vec_q4_0_f32_f32"], (4, b"\x03\x02\x23\x07"))

        self.assertIn("extern const void * add_data[2][2][2][2];", hdr)
        self.assertIn("extern const uint64_t arr_dmmv_q4_0_f32_f32_len[3];", hdr)
        self.assertIn(
            "const void * add_data[2][2][2][2] = {{{{add_f32_f32_f32_data, nullptr}, {nullptr, nullptr}}, ",
            src,
        )
        self.assertIn(
            "const uint64_t arr_dmmv_q4_0_f32_f32_len[3] = {mul_mat_vec_q4_0_f32_f32_len, 0, 0};",
            src,
        )

    def test_unreadable_artifact_is_reported_and_skipped(self):
        (self.out / "norm_f32.spv").mkdir()
        self._artifact("pad_f32", b"\x01")
        err = io.StringIO()
        with redirect_stderr(err):
            artifacts = read_artifacts(self.catalog)
        self.assertEqual([a.name for a in artifacts], ["pad_f32"])
        self.assertIn("shadergen: ERROR: cannot read", err.getvalue())

    def test_no_embed_emits_stubs_only(self):
        self._artifact("add_f32_f32_f32", b"\x01\x02")
        write_embed_files(self.catalog, self.hpp, self.cpp, no_embed=True, output_dir=self.out)
        hdr = self.hpp.read_text(encoding="utf-8")
        src = self.cpp.read_text(encoding="utf-8")

        self.assertIn(f'#define VK_SHADER_DIR "{self.out.as_posix()}"', hdr)
        self.assertIn('inline constexpr char const * norm_f32_data = "norm_f32.spv";', hdr)
        self.assertIn("const uint64_t add_f32_f32_f32_len = 0;", hdr)
        for job in self.catalog:
            self.assertIn(f"inline constexpr char const * {job.name}_data = ", hdr)
        self.assertNotIn("unsigned char", hdr + src)
        self.assertNotIn("nullptr", src)

    def test_rerun_leaves_outputs_untouched(self):
        self._artifact("add_f32_f32_f32", b"\x01\x02\x03")
        self.assertEqual(
            write_embed_files(self.catalog, self.hpp, self.cpp, no_embed=False, output_dir=self.out),
            (True, True),
        )
        os.utime(self.hpp, (1_000_000, 1_000_000))
        os.utime(self.cpp, (1_000_000, 1_000_000))
        before = (self.hpp.read_bytes(), self.cpp.read_bytes())

        self.assertEqual(
            write_embed_files(self.catalog, self.hpp, self.cpp, no_embed=False, output_dir=self.out),
            (False, False),
        )
        self.assertEqual((self.hpp.read_bytes(), self.cpp.read_bytes()), before)
        self.assertEqual(self.hpp.stat().st_mtime, 1_000_000)
        self.assertEqual(self.cpp.stat().st_mtime, 1_000_000)


if __name__ == "__main__":
    unittest.main()
