"""Transport encoding for stored files.

Files travel inside a single JSON request body, so content is a string:

- text is sent as UTF-8, verbatim (line endings untouched)
- binary is sent as ``"base64:" + standard base64``

A file is binary when its first 8 KiB contain a NUL byte. This is a
heuristic: a binary file with no NUL in its first 8 KiB is sent as text.
Content that passes the text check but is not valid UTF-8 is framed as
base64 as well, since it cannot be carried verbatim in a JSON string.

The content hash is the MD5 of the raw bytes. It is a change detector only.
"""

import base64
import binascii
import hashlib
import logging
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

__all__ = [
    "BASE64_PREFIX",
    "BINARY_SAMPLE_SIZE",
    "MAX_FILE_SIZE",
    "CodecError",
    "EncodedFile",
    "FileTooLargeError",
    "compute_md5",
    "decode_content",
    "decode_file",
    "encode_bytes",
    "encode_file",
    "hash_file",
    "is_binary",
]

MAX_FILE_SIZE = 1_048_576
BINARY_SAMPLE_SIZE = 8192
BASE64_PREFIX = "base64:"


class CodecError(Exception):
    """Base exception for file encoding errors."""


class FileTooLargeError(CodecError):
    """Raised when a file exceeds MAX_FILE_SIZE."""

    def __init__(self, path: Path | str, size: int):
        self.path = path
        self.size = size
        super().__init__(f"File exceeds 1MB limit ({size} bytes)")


@dataclass
class EncodedFile:
    """A file ready for transport."""

    content: str
    content_hash: str
    size: int


def compute_md5(data: bytes) -> str:
    return hashlib.md5(data).hexdigest()


def is_binary(data: bytes) -> bool:
    """Return True if a NUL byte appears in the first 8 KiB."""
    return b"\x00" in data[:BINARY_SAMPLE_SIZE]


def encode_bytes(data: bytes) -> EncodedFile:
    """Encode raw bytes for transport.

    Raises:
        FileTooLargeError: ``data`` is larger than MAX_FILE_SIZE
    """
    if len(data) > MAX_FILE_SIZE:
        raise FileTooLargeError("<bytes>", len(data))

    content_hash = compute_md5(data)

    if is_binary(data):
        content = BASE64_PREFIX + base64.b64encode(data).decode("ascii")
    else:
        try:
            content = data.decode("utf-8")
        except UnicodeDecodeError:
            logger.debug("Text-classified content is not valid UTF-8, using base64")
            content = BASE64_PREFIX + base64.b64encode(data).decode("ascii")

    return EncodedFile(content=content, content_hash=content_hash, size=len(data))


def encode_file(path: Path) -> EncodedFile:
    """Read a file and encode it for transport.

    Args:
        path: File to read

    Returns:
        EncodedFile with content, MD5 of the raw bytes and size

    Raises:
        FileTooLargeError: File is larger than 1 MiB
        OSError: File cannot be read
    """
    path = Path(path)
    size = path.stat().st_size
    if size > MAX_FILE_SIZE:
        raise FileTooLargeError(path, size)

    data = path.read_bytes()
    # The file may have grown between stat() and read
    if len(data) > MAX_FILE_SIZE:
        raise FileTooLargeError(path, len(data))

    return encode_bytes(data)


def decode_content(content: str) -> bytes:
    """Invert the transport encoding.

    Raises:
        CodecError: Payload is not valid base64, or text is not valid UTF-8
    """
    if content.startswith(BASE64_PREFIX):
        try:
            return base64.b64decode(content[len(BASE64_PREFIX) :])
        except binascii.Error as e:
            raise CodecError(f"Invalid base64 content: {e}") from e
    try:
        return content.encode("utf-8")
    except UnicodeEncodeError as e:
        raise CodecError(f"Content is not encodable as UTF-8: {e}") from e


def decode_file(path: Path, content: str) -> int:
    """Decode transport content and write it to ``path``.

    Parent directories are created as needed.

    Returns:
        Number of bytes written
    """
    path = Path(path)
    data = decode_content(content)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)
    return len(data)


def hash_file(path: Path) -> str:
    """MD5 of the file's current bytes (always re-read)."""
    return compute_md5(Path(path).read_bytes())
