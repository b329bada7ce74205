from pathlib import Path
from tempfile import TemporaryDirectory
import unittest

from stackmanager.utils import checksums_match, md5_bytes, md5_file, normalize_checksum, parse_identifier

ABC_MD5 = "900150983cd24fb0d6963f7d28e17f72"


class ChecksumTest(unittest.TestCase):
    def test_md5_file(self) -> None:
        with TemporaryDirectory() as temp_dir:
            path = Path(temp_dir) / "a.bin"
            path.write_bytes(b"abc")
            self.assertEqual(md5_file(path), ABC_MD5)
            self.assertEqual(md5_file(Path(temp_dir) / "missing.bin"), md5_bytes(b""))

    def test_remote_checksum_wrapping_is_tolerated(self) -> None:
        self.assertTrue(checksums_match(ABC_MD5, f"{ABC_MD5.upper()}  \r\n".encode()))
        self.assertTrue(checksums_match(ABC_MD5, f"{ABC_MD5}  worker.exe\n"))
        self.assertTrue(checksums_match(ABC_MD5, f"MD5 hash of worker.exe:\r\n{ABC_MD5}\r\n"))
        self.assertEqual(normalize_checksum(b"  \n"), "")

    def test_empty_or_different_remote_never_matches(self) -> None:
        self.assertFalse(checksums_match(md5_bytes(b""), b""))
        self.assertFalse(checksums_match(ABC_MD5, md5_bytes(b"abd")))


class IdentifierTest(unittest.TestCase):
    def test_parse_identifier(self) -> None:
        value = "6f2a1c3e-9b1d-4a7e-8c55-0d2f1b3a4c5e"
        self.assertEqual(parse_identifier(f"{value}\n"), value)
        self.assertEqual(parse_identifier("{" + value.upper() + "}"), value)
        self.assertIsNone(parse_identifier("abc-123"))
        self.assertIsNone(parse_identifier(""))
        self.assertIsNone(parse_identifier("00000000-0000-0000-0000-000000000000"))


if __name__ == "__main__":
    unittest.main()
