"""Cross-machine memory and file sync for AI coding assistants.

This package provides:
- MemoryClient: HTTP client for the remote memory server
- FileSyncReconciler: hash-based sync of shared project files
- ForeverContext: per-process context passed to the tools
- build_server: MCP server exposing the tools over stdio
"""

__version__ = "0.4.0"

from forever.client import (
    AuthenticationError,
    GatewayConnectionError,
    MemoryClient,
    MemoryGatewayError,
    NotFoundError,
    Unauthenticated,
    create_client,
)
from forever.codec import FileTooLargeError, decode_file, encode_file
from forever.context import ForeverContext
from forever.sync import FileSyncReconciler, SyncReport

__all__ = [
    "__version__",
    # Client
    "MemoryClient",
    "Unauthenticated",
    "create_client",
    # Codec
    "encode_file",
    "decode_file",
    # Sync
    "FileSyncReconciler",
    "SyncReport",
    # Context
    "ForeverContext",
    # Exceptions
    "MemoryGatewayError",
    "GatewayConnectionError",
    "AuthenticationError",
    "NotFoundError",
    "FileTooLargeError",
]
