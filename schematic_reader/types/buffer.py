import gzip
import struct
import zlib

import numpy as np

from schematic_reader.errors import (
    DecompressionFailed,
    MalformedVarint,
    TruncatedBlockData,
    UnexpectedEof,
)

DEFAULT_MAX_DEPTH = 512

# Largest single read issued against a stream. Length prefixes are untrusted.
_STREAM_CHUNK = 1 << 20


class Buffer(object):
    """
    Forward-only big-endian reader over a byte string or a binary file object.

    Besides the bytes themselves, a buffer carries the limits of the tag
    decoder reading from it: ``max_depth`` bounds tag nesting and ``notes``
    collects a line for every lenient decision taken while decoding.
    """

    def __init__(self, data=b"", fd=None, max_depth=DEFAULT_MAX_DEPTH):
        self.buff = bytes(data)
        self.pos = 0
        self.fd = fd
        self.max_depth = max_depth
        self.notes = []

    def __len__(self):
        return len(self.buff) - self.pos

    def at_end(self):
        if self.pos < len(self.buff):
            return False
        if self.fd is None:
            return True
        peeked = self._fd_read(1)
        if not peeked:
            return True
        self.buff = peeked
        self.pos = 0
        return False

    def read(self, length):
        available = len(self.buff) - self.pos
        if length <= available:
            data = self.buff[self.pos:self.pos + length]
            self.pos += length
            return data
        if self.fd is None:
            raise UnexpectedEof(length, available)

        head = self.buff[self.pos:]
        self.buff = b""
        self.pos = 0
        chunks = [head]
        remaining = length - len(head)
        while remaining > 0:
            chunk = self._fd_read(min(remaining, _STREAM_CHUNK))
            if not chunk:
                raise UnexpectedEof(length, length - remaining)
            chunks.append(chunk)
            remaining -= len(chunk)
        return b"".join(chunks)

    def read_remaining(self):
        data = self.buff[self.pos:]
        self.buff = b""
        self.pos = 0
        if self.fd is not None:
            data += self._fd_read(-1)
        return data

    def _fd_read(self, size):
        try:
            return self.fd.read(size)
        except (EOFError, zlib.error, gzip.BadGzipFile) as e:
            raise DecompressionFailed(str(e)) from e

    def unpack(self, fmt):
        fmt = ">" + fmt
        fields = struct.unpack(fmt, self.read(struct.calcsize(fmt)))
        if len(fields) == 1:
            fields = fields[0]
        return fields

    def unpack_array(self, dtype, length):
        dtype = np.dtype(dtype)
        return np.frombuffer(self.read(length * dtype.itemsize), dtype=dtype)

    def unpack_varint(self):
        start = self.pos
        number = 0
        for i in range(5):
            b = self.unpack("B")
            if i == 4 and b & 0x70:
                break
            number |= (b & 0x7F) << 7 * i
            if not b & 0x80:
                return number
        raise MalformedVarint(start)

    @classmethod
    def pack(cls, fmt, *fields):
        return struct.pack(">" + fmt, *fields)

    @classmethod
    def pack_varint(cls, number):
        if not 0 <= number < 1 << 32:
            raise ValueError(f"varint out of range: {number}")
        out = bytearray()
        while True:
            b = number & 0x7F
            number >>= 7
            if number:
                out.append(b | 0x80)
            else:
                out.append(b)
                return bytes(out)


def decode_varints(data, count):
    """
    Decodes exactly *count* unsigned LEB128 varints from the start of *data*
    (bytes or a numpy array of bytes).

    Returns a ``(values, used)`` pair: a ``uint64`` array of the decoded values
    and the number of bytes they occupied. Whatever follows is left to the
    caller to judge.
    """
    if isinstance(data, np.ndarray):
        raw = data.view(np.uint8)
    else:
        raw = np.frombuffer(bytes(data), dtype=np.uint8)

    ends = np.flatnonzero(raw < 0x80)
    if len(ends) < count:
        raise TruncatedBlockData(count, len(ends))
    if count == 0:
        return np.zeros(0, dtype=np.uint64), 0

    ends = ends[:count]
    starts = np.empty(count, dtype=np.intp)
    starts[0] = 0
    starts[1:] = ends[:-1] + 1
    sizes = ends - starts + 1
    # A fifth byte may only carry the top four bits of a 32-bit value.
    bad = (sizes > 5) | ((sizes == 5) & ((raw[ends] & 0x70) != 0))
    if bad.any():
        raise MalformedVarint(int(starts[np.argmax(bad)]))

    used = int(ends[-1]) + 1
    group = np.repeat(np.arange(count), sizes)
    shifts = ((np.arange(used) - starts[group]) * 7).astype(np.uint64)
    parts = (raw[:used] & 0x7F).astype(np.uint64) << shifts
    # Each varint's 7-bit groups occupy disjoint bits, so summing equals or-ing.
    return np.add.reduceat(parts, starts), used
