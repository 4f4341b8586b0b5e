"""
Versioned binary container for solver state.

Layout (little-endian):

    magic      4s   b"PFCF"
    version    u16
    flags      u16  bit 0: payload is zstd-compressed
    length     u64  stored payload length in bytes
    crc32      u32  CRC32 of the stored payload
    payload

Payload (after decompression):

    header_len u32
    header     JSON: tree config, solver config, iteration, buffer directory
    padding    to 8 bytes
    buffers    raw arrays at the directory offsets, each 8-byte aligned

Decoding reads everything into fresh arrays before returning, so a
failed load never leaves partial state behind.
"""

import json
import logging
import struct
import zlib
from dataclasses import dataclass, field
from typing import Any, Dict, Tuple

import numpy as np
import zstandard

from postflop_cfr.games.errors import (
    ChecksumError,
    DecompressionError,
    LoadError,
    TruncatedDataError,
    VersionMismatchError,
)

logger = logging.getLogger(__name__)

MAGIC = b'PFCF'
FORMAT_VERSION = 1
FLAG_ZSTD = 0x1
ZSTD_LEVEL = 3

_HEADER = struct.Struct('<4sHHQI')
_U32 = struct.Struct('<I')
_ALIGN = 8


@dataclass
class SavedState:
    """Everything needed to resume or inspect a solve."""
    tree_config: Dict[str, Any]
    solver_config: Dict[str, Any]
    iteration: int
    arrays: Dict[str, np.ndarray] = field(default_factory=dict)
    extra: Dict[str, Any] = field(default_factory=dict)


def _pad(n: int) -> int:
    return (-n) % _ALIGN


def _encode_payload(state: SavedState) -> bytes:
    directory = []
    offset = 0
    for name, arr in state.arrays.items():
        arr = np.ascontiguousarray(arr)
        dtype = arr.dtype.newbyteorder('<')
        directory.append({
            'name': name,
            'dtype': dtype.str,
            'shape': list(arr.shape),
            'offset': offset,
            'nbytes': int(arr.nbytes),
        })
        offset += arr.nbytes + _pad(arr.nbytes)

    header = json.dumps({
        'tree_config': state.tree_config,
        'solver_config': state.solver_config,
        'iteration': int(state.iteration),
        'extra': state.extra,
        'buffers': directory,
    }).encode('utf-8')

    parts = [_U32.pack(len(header)), header]
    lead = _U32.size + len(header)
    parts.append(b'\0' * _pad(lead))
    for entry, arr in zip(directory, state.arrays.values()):
        raw = np.ascontiguousarray(arr, dtype=np.dtype(entry['dtype'])).tobytes()
        parts.append(raw)
        parts.append(b'\0' * _pad(len(raw)))
    return b''.join(parts)


def _decode_payload(payload: bytes) -> SavedState:
    if len(payload) < _U32.size:
        raise TruncatedDataError("Payload too short for header length")
    (header_len,) = _U32.unpack_from(payload, 0)
    lead = _U32.size + header_len
    if len(payload) < lead:
        raise TruncatedDataError("Payload ends inside the JSON header")
    try:
        header = json.loads(payload[_U32.size:lead].decode('utf-8'))
        directory = header['buffers']
    except (UnicodeDecodeError, ValueError, KeyError, TypeError) as e:
        raise LoadError(f"Malformed container header: {e}") from e

    base = lead + _pad(lead)
    arrays = {}
    for entry in directory:
        try:
            dtype = np.dtype(entry['dtype'])
            shape = tuple(int(s) for s in entry['shape'])
            start = base + int(entry['offset'])
            nbytes = int(entry['nbytes'])
        except (KeyError, TypeError, ValueError) as e:
            raise LoadError(f"Malformed buffer entry: {e}") from e
        if int(np.prod(shape, dtype=np.int64)) * dtype.itemsize != nbytes:
            raise LoadError(f"Buffer {entry['name']!r} size does not match its shape")
        if start + nbytes > len(payload):
            raise TruncatedDataError(f"Payload ends inside buffer {entry['name']!r}")
        if nbytes == 0:
            arrays[entry['name']] = np.zeros(shape, dtype=dtype.newbyteorder('='))
            continue
        arr = np.frombuffer(payload, dtype=dtype, count=nbytes // dtype.itemsize, offset=start)
        arrays[entry['name']] = arr.astype(dtype.newbyteorder('='), copy=True).reshape(shape)

    return SavedState(
        tree_config=header.get('tree_config', {}),
        solver_config=header.get('solver_config', {}),
        iteration=int(header.get('iteration', 0)),
        arrays=arrays,
        extra=header.get('extra', {}),
    )


def dumps(state: SavedState, compress: bool = True) -> bytes:
    """Serialize state to container bytes."""
    payload = _encode_payload(state)
    flags = 0
    if compress:
        payload = zstandard.ZstdCompressor(level=ZSTD_LEVEL).compress(payload)
        flags |= FLAG_ZSTD
    crc = zlib.crc32(payload) & 0xFFFFFFFF
    logger.debug("Container: %d buffers, %d payload bytes, compressed=%s",
                 len(state.arrays), len(payload), compress)
    return _HEADER.pack(MAGIC, FORMAT_VERSION, flags, len(payload), crc) + payload


def read_header(data: bytes) -> Tuple[int, int, int, int]:
    """(version, flags, length, crc) after checking magic and size."""
    if len(data) < _HEADER.size:
        raise TruncatedDataError(f"Container needs at least {_HEADER.size} bytes, got {len(data)}")
    magic, version, flags, length, crc = _HEADER.unpack_from(data, 0)
    if magic != MAGIC:
        raise LoadError(f"Not a solver container (magic {magic!r})")
    if version != FORMAT_VERSION:
        raise VersionMismatchError(f"Unsupported container version {version}, expected {FORMAT_VERSION}")
    return version, flags, length, crc


def loads(data: bytes) -> SavedState:
    """Decode container bytes. Raises a LoadError subclass on any problem."""
    data = bytes(data)
    _, flags, length, crc = read_header(data)
    payload = data[_HEADER.size:_HEADER.size + length]
    if len(payload) < length:
        raise TruncatedDataError(f"Payload has {len(payload)} of {length} bytes")
    if zlib.crc32(payload) & 0xFFFFFFFF != crc:
        raise ChecksumError("Container checksum mismatch")
    if flags & FLAG_ZSTD:
        try:
            payload = zstandard.ZstdDecompressor().decompress(payload)
        except zstandard.ZstdError as e:
            raise DecompressionError(f"Could not decompress payload: {e}") from e
    return _decode_payload(payload)


def save(path, state: SavedState, compress: bool = True) -> int:
    """Write state to path, return the number of bytes written."""
    data = dumps(state, compress)
    with open(path, 'wb') as f:
        f.write(data)
    logger.info("Saved solver state to %s (%d bytes)", path, len(data))
    return len(data)


def load(path) -> SavedState:
    with open(path, 'rb') as f:
        data = f.read()
    return loads(data)
