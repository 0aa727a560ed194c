"""Tests for the file transport codec."""

import base64
import hashlib
import os

import pytest

from forever.codec import (
    BASE64_PREFIX,
    BINARY_SAMPLE_SIZE,
    MAX_FILE_SIZE,
    CodecError,
    FileTooLargeError,
    compute_md5,
    decode_content,
    decode_file,
    encode_bytes,
    encode_file,
    hash_file,
    is_binary,
)


def roundtrip(tmp_path, data: bytes) -> bytes:
    source = tmp_path / "source.bin"
    source.write_bytes(data)
    encoded = encode_file(source)

    target = tmp_path / "restored" / "target.bin"
    decode_file(target, encoded.content)
    return target.read_bytes()


class TestRoundTrip:
    """decode(encode(B)) == B."""

    @pytest.mark.parametrize(
        "data",
        [
            b"",
            b"\x00" * 4096,
            b"hello\r\nworld\n",
            "ünïcødé text ✓\n".encode("utf-8"),
            b"\xef\xbb\xbfBOM stays\r\n",
        ],
        ids=["empty", "all-zero", "crlf", "unicode", "bom"],
    )
    def test_roundtrip(self, tmp_path, data):
        assert roundtrip(tmp_path, data) == data

    def test_random_bytes(self, tmp_path):
        data = os.urandom(200_000)
        assert roundtrip(tmp_path, data) == data

    def test_max_size_random_bytes(self, tmp_path):
        data = os.urandom(MAX_FILE_SIZE)
        assert roundtrip(tmp_path, data) == data

    def test_invalid_utf8_without_nul(self, tmp_path):
        """Text-classified bytes that are not UTF-8 still round-trip."""
        data = b"latin-1 caf\xe9 " * 10
        assert not is_binary(data)

        encoded = encode_bytes(data)
        assert encoded.content.startswith(BASE64_PREFIX)
        assert roundtrip(tmp_path, data) == data


class TestSizeLimit:
    def test_exactly_one_mebibyte_succeeds(self, tmp_path):
        path = tmp_path / "max.txt"
        path.write_bytes(b"a" * MAX_FILE_SIZE)

        encoded = encode_file(path)
        assert encoded.size == 1_048_576

    def test_one_byte_over_fails(self, tmp_path):
        path = tmp_path / "big.txt"
        path.write_bytes(b"a" * (MAX_FILE_SIZE + 1))

        with pytest.raises(FileTooLargeError) as exc_info:
            encode_file(path)

        assert exc_info.value.size == 1_048_577
        assert str(exc_info.value) == "File exceeds 1MB limit (1048577 bytes)"

    def test_encode_bytes_over_limit(self):
        with pytest.raises(FileTooLargeError):
            encode_bytes(b"a" * (MAX_FILE_SIZE + 1))

    def test_missing_file_raises_oserror(self, tmp_path):
        with pytest.raises(OSError):
            encode_file(tmp_path / "nope.txt")


class TestBinaryDetection:
    def test_nul_at_last_sampled_offset_is_binary(self):
        data = bytearray(b"a" * (BINARY_SAMPLE_SIZE + 100))
        data[8191] = 0
        assert is_binary(bytes(data))

    def test_nul_just_past_sample_is_text(self):
        data = bytearray(b"a" * (BINARY_SAMPLE_SIZE + 100))
        data[8192] = 0
        assert not is_binary(bytes(data))

    def test_text_without_nul(self):
        assert not is_binary(b"plain text\n")

    def test_empty_is_text(self):
        assert not is_binary(b"")

    def test_binary_is_base64_framed(self):
        data = b"\x89PNG\r\n\x1a\n\x00\x00\x00\rIHDR"
        encoded = encode_bytes(data)

        assert encoded.content == BASE64_PREFIX + base64.b64encode(data).decode()
        assert encoded.size == len(data)

    def test_late_nul_is_sent_as_text(self):
        """A NUL past the sample window is carried verbatim in the text."""
        data = b"a" * 8192 + b"\x00tail"
        encoded = encode_bytes(data)

        assert not encoded.content.startswith(BASE64_PREFIX)
        assert encoded.content.encode("utf-8") == data

    def test_text_is_verbatim(self):
        encoded = encode_bytes(b"line one\r\nline two\n")
        assert encoded.content == "line one\r\nline two\n"


class TestHash:
    def test_md5_of_raw_bytes(self):
        data = b"Hello, World!"
        assert compute_md5(data) == hashlib.md5(data).hexdigest()
        assert compute_md5(data) == "65a8e27d8879283831b664bd8b7f0ad4"

    def test_hash_is_stable(self):
        data = os.urandom(1024)
        assert encode_bytes(data).content_hash == encode_bytes(data).content_hash

    def test_single_byte_change_changes_hash(self):
        data = bytearray(b"x" * 1024)
        original = encode_bytes(bytes(data)).content_hash
        data[512] = ord("y")
        assert encode_bytes(bytes(data)).content_hash != original

    def test_binary_hash_is_over_raw_bytes(self):
        data = b"\x00\x01\x02"
        assert encode_bytes(data).content_hash == hashlib.md5(data).hexdigest()

    def test_hash_file_rereads(self, tmp_path):
        path = tmp_path / "f.txt"
        path.write_text("one")
        first = hash_file(path)
        path.write_text("two")
        assert hash_file(path) != first


class TestDecode:
    def test_creates_parent_directories(self, tmp_path):
        target = tmp_path / "a" / "b" / "c.txt"
        written = decode_file(target, "nested")

        assert target.read_text() == "nested"
        assert written == 6

    def test_overwrites_existing_file(self, tmp_path):
        target = tmp_path / "f.txt"
        target.write_text("old content that is longer")
        decode_file(target, "new")
        assert target.read_bytes() == b"new"

    def test_base64_prefix_is_stripped(self):
        assert decode_content("base64:AAEC") == b"\x00\x01\x02"

    def test_text_is_utf8(self):
        assert decode_content("café") == "café".encode("utf-8")

    def test_invalid_base64_raises(self):
        with pytest.raises(CodecError):
            decode_content("base64:abc")
