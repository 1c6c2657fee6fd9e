import io
import os
import tempfile
import unittest
from contextlib import redirect_stderr
from pathlib import Path

from shadergen.fileio import ensure_directory, read_binary_file, write_binary_file, write_file_if_changed


class TestWriteFileIfChanged(unittest.TestCase):
    def test_writes_only_when_content_differs(self):
        with tempfile.TemporaryDirectory() as td:
            path = Path(td) / "out.hpp"

            self.assertTrue(write_file_if_changed(path, "one\n"))
            self.assertEqual(path.read_bytes(), b"one\n")

            os.utime(path, (1_000_000, 1_000_000))
            self.assertFalse(write_file_if_changed(path, b"one\n"))
            self.assertEqual(path.stat().st_mtime, 1_000_000)

            self.assertTrue(write_file_if_changed(path, "two\n"))
            self.assertEqual(path.read_bytes(), b"two\n")
            self.assertNotEqual(path.stat().st_mtime, 1_000_000)

    def test_write_failure_is_reported(self):
        with tempfile.TemporaryDirectory() as td:
            path = Path(td) / "missing" / "out.cpp"
            err = io.StringIO()
            with redirect_stderr(err):
                self.assertFalse(write_file_if_changed(path, "x"))
            self.assertIn("shadergen: ERROR: cannot write", err.getvalue())


class TestBinaryHelpers(unittest.TestCase):
    def test_read_missing_file(self):
        with tempfile.TemporaryDirectory() as td:
            path = Path(td) / "absent.spv"
            err = io.StringIO()
            with redirect_stderr(err):
                self.assertEqual(read_binary_file(path, may_not_exist=True), b"")
            self.assertEqual(err.getvalue(), "")

            with redirect_stderr(err):
                self.assertEqual(read_binary_file(path), b"")
            self.assertIn("file not found", err.getvalue())

    def test_round_trip_and_directories(self):
        with tempfile.TemporaryDirectory() as td:
            nested = Path(td) / "a" / "b"
            ensure_directory(nested)
            ensure_directory(nested)
            self.assertTrue(nested.is_dir())

            path = nested / "blob.bin"
            self.assertTrue(write_binary_file(path, bytes([0, 1, 255])))
            self.assertEqual(read_binary_file(path), b"\x00\x01\xff")


if __name__ == "__main__":
    unittest.main()
