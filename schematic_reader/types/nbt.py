import enum
import functools
import gzip
import logging
import zlib

import numpy as np
from mutf8 import decode_modified_utf8, encode_modified_utf8

from schematic_reader.errors import (
    DecompressionFailed,
    DuplicateKey,
    InvalidTagKind,
    InvalidUtf8,
    NegativeArrayLength,
    RecursionLimitExceeded,
    TrailingData,
)
from schematic_reader.types.buffer import DEFAULT_MAX_DEPTH, Buffer

logger = logging.getLogger(__name__)

_kinds = {}
_ids = {}


class TagKind(enum.IntEnum):
    END = 0
    BYTE = 1
    SHORT = 2
    INT = 3
    LONG = 4
    FLOAT = 5
    DOUBLE = 6
    BYTE_ARRAY = 7
    STRING = 8
    LIST = 9
    COMPOUND = 10
    INT_ARRAY = 11
    LONG_ARRAY = 12


def _decode_string(data):
    if data.isascii():
        return data.decode('ascii')

    # Modified UTF-8 only knows 1, 2 and 3 byte sequences; 4 byte UTF-8 forms
    # and stray continuation bytes are rejected before mutf8 sees them.
    i = 0
    n = len(data)
    while i < n:
        a = data[i]
        if a < 0x80:
            i += 1
        elif a >> 5 == 0b110:
            if i + 1 >= n or data[i+1] >> 6 != 0b10:
                raise InvalidUtf8(data)
            i += 2
        elif a >> 4 == 0b1110:
            if i + 2 >= n or data[i+1] >> 6 != 0b10 or data[i+2] >> 6 != 0b10:
                raise InvalidUtf8(data)
            i += 3
        else:
            raise InvalidUtf8(data)

    try:
        return decode_modified_utf8(data)
    except ValueError as e:
        raise InvalidUtf8(data) from e


def _check_depth(buff, depth):
    if depth > buff.max_depth:
        raise RecursionLimitExceeded(buff.max_depth)


# Base types ------------------------------------------------------------------

@functools.total_ordering
class _Tag(object):
    __slots__ = ('value',)

    def __init__(self, value):
        self.value = value

    @classmethod
    def from_bytes(cls, bytes):
        return cls.from_buff(Buffer(bytes))

    @classmethod
    def from_buff(cls, buff, depth=1):
        raise NotImplementedError

    def to_bytes(self):
        raise NotImplementedError

    def deep_copy(self):
        return type(self).from_bytes(self.to_bytes())

    def to_obj(self):
        return self.value

    def __hash__(self):
        return hash(self.to_bytes())

    def __repr__(self):
        return "%s(%r)" % (type(self).__name__, self.value)

    def __eq__(self, other):
        if not isinstance(other, _Tag):
            return NotImplemented
        return type(self) is type(other) and self.to_obj() == other.to_obj()

    def __lt__(self, other):
        return self.to_obj() < other.to_obj()


class _DataTag(_Tag):
    __slots__ = ()
    fmt = None

    @classmethod
    def from_buff(cls, buff, depth=1):
        return cls(buff.unpack(cls.fmt))

    def to_bytes(self):
        return Buffer.pack(self.fmt, self.value)


class _ArrayTag(_Tag):
    __slots__ = ()
    dtype = None
    wire_dtype = None

    def __init__(self, value):
        if isinstance(value, (bytes, bytearray)):
            value = np.frombuffer(value, dtype=self.wire_dtype)
        self.value = np.array(value, dtype=self.dtype)

    def __len__(self):
        return len(self.value)

    @classmethod
    def from_buff(cls, buff, depth=1):
        length = buff.unpack('i')
        if length < 0:
            raise NegativeArrayLength(length)
        return cls(buff.unpack_array(cls.wire_dtype, length))

    def to_bytes(self):
        return Buffer.pack('i', len(self.value)) + \
               self.value.astype(self.wire_dtype).tobytes()

    def to_obj(self):
        return self.value.tolist()

    def __repr__(self):
        return "%s(%r)" % (type(self).__name__, self.value.tolist())


# NBT tags --------------------------------------------------------------------

class TagByte(_DataTag):
    __slots__ = ()
    fmt = 'b'


class TagShort(_DataTag):
    __slots__ = ()
    fmt = 'h'


class TagInt(_DataTag):
    __slots__ = ()
    fmt = 'i'


class TagLong(_DataTag):
    __slots__ = ()
    fmt = 'q'


class TagFloat(_DataTag):
    __slots__ = ()
    fmt = 'f'


class TagDouble(_DataTag):
    __slots__ = ()
    fmt = 'd'


class TagString(_Tag):
    __slots__ = ()

    @classmethod
    def from_buff(cls, buff, depth=1):
        string_length = buff.unpack('H')
        return cls(_decode_string(buff.read(string_length)))

    def to_bytes(self):
        data = encode_modified_utf8(self.value)
        return Buffer.pack('H', len(data)) + data


class TagByteArray(_ArrayTag):
    __slots__ = ()
    dtype = np.int8
    wire_dtype = '>i1'


class TagIntArray(_ArrayTag):
    __slots__ = ()
    dtype = np.int32
    wire_dtype = '>i4'


class TagLongArray(_ArrayTag):
    __slots__ = ()
    dtype = np.int64
    wire_dtype = '>i8'


class TagList(_Tag):
    __slots__ = ('kind',)

    def __init__(self, value, kind=None):
        value = list(value)
        if kind is None:
            kind = _ids[type(value[0])] if value else TagKind.END
        kind = TagKind(kind)
        for tag in value:
            if _ids.get(type(tag)) != kind:
                raise TypeError(f'{type(tag).__name__} in a list of {kind.name}')
        self.value = value
        self.kind = kind

    def __len__(self):
        return len(self.value)

    def __repr__(self):
        return "%s(%r, %s)" % (type(self).__name__, self.value, self.kind.name)

    @classmethod
    def from_buff(cls, buff, depth=1):
        _check_depth(buff, depth)
        inner_kind_id, array_length = buff.unpack('Bi')
        if inner_kind_id != TagKind.END and inner_kind_id not in _kinds:
            raise InvalidTagKind(inner_kind_id)
        if array_length < 0:
            note = f'list of kind {inner_kind_id} declared {array_length} entries, read as empty'
            logger.warning(note)
            buff.notes.append(note)
            array_length = 0
        if inner_kind_id == TagKind.END:
            if array_length > 0:
                raise InvalidTagKind(0, f'list of {array_length} End tags')
            return cls([], TagKind.END)

        inner_kind = _kinds[inner_kind_id]
        value = []
        for _ in range(array_length):
            value.append(inner_kind.from_buff(buff, depth + 1))
        return cls(value, inner_kind_id)

    def to_bytes(self):
        return Buffer.pack('Bi', self.kind, len(self.value)) + \
               b"".join(tag.to_bytes() for tag in self.value)

    def to_obj(self):
        return [tag.to_obj() for tag in self.value]

    def __eq__(self, other):
        if not isinstance(other, _Tag):
            return NotImplemented
        return type(other) is TagList and self.kind == other.kind and self.value == other.value

    def __hash__(self):
        return hash(self.to_bytes())


class TagCompound(_Tag):
    __slots__ = ()

    def __len__(self):
        return len(self.value)

    @classmethod
    def from_buff(cls, buff, depth=1):
        _check_depth(buff, depth)
        value = {}
        while True:
            kind_id = buff.unpack('B')
            if kind_id == TagKind.END:
                return cls(value)
            kind = _kinds.get(kind_id)
            if kind is None:
                raise InvalidTagKind(kind_id)
            name = TagString.from_buff(buff).value
            if name in value:
                raise DuplicateKey(name)
            value[name] = kind.from_buff(buff, depth + 1)

    def to_bytes(self):
        string = b""
        for name, tag in self.value.items():
            string += Buffer.pack('B', _ids[type(tag)])
            string += TagString(name).to_bytes()
            string += tag.to_bytes()
        return string + Buffer.pack('B', TagKind.END)

    def to_obj(self):
        return dict((name, tag.to_obj()) for name, tag in self.value.items())

    def __eq__(self, other):
        if not isinstance(other, _Tag):
            return NotImplemented
        return isinstance(other, TagCompound) and self.value == other.value

    def __hash__(self):
        return hash(self.to_bytes())


class TagRoot(TagCompound):
    """
    The single named compound at the top of an NBT stream.

    ``notes`` lists every lenient decision the decoder took while reading it;
    an empty tuple means the stream was read strictly.
    """
    __slots__ = ('notes',)

    def __init__(self, value, notes=()):
        super().__init__(value)
        self.notes = tuple(notes)

    @classmethod
    def from_buff(cls, buff, depth=1):
        kind_id = buff.unpack('B')
        if kind_id != TagKind.COMPOUND:
            raise InvalidTagKind(kind_id, f'root tag must be a compound, not kind {kind_id}')
        name = TagString.from_buff(buff).value
        body = TagCompound.from_buff(buff, depth)
        return cls({name: body}, buff.notes)

    @classmethod
    def from_body(cls, body, name=u""):
        return cls({name: body})

    @property
    def name(self):
        return next(iter(self.value))

    @property
    def body(self):
        return next(iter(self.value.values()))

    def to_bytes(self):
        return Buffer.pack('B', TagKind.COMPOUND) + \
               TagString(self.name).to_bytes() + \
               self.body.to_bytes()


# Register tags ---------------------------------------------------------------

_kinds[TagKind.BYTE] = TagByte
_kinds[TagKind.SHORT] = TagShort
_kinds[TagKind.INT] = TagInt
_kinds[TagKind.LONG] = TagLong
_kinds[TagKind.FLOAT] = TagFloat
_kinds[TagKind.DOUBLE] = TagDouble
_kinds[TagKind.BYTE_ARRAY] = TagByteArray
_kinds[TagKind.STRING] = TagString
_kinds[TagKind.LIST] = TagList
_kinds[TagKind.COMPOUND] = TagCompound
_kinds[TagKind.INT_ARRAY] = TagIntArray
_kinds[TagKind.LONG_ARRAY] = TagLongArray
_ids.update({v: k for k, v in _kinds.items()})


# Decoding --------------------------------------------------------------------

def sniff_compression(head):
    if head[:2] == b'\x1f\x8b':
        return 'gzip'
    if len(head) >= 2 and head[0] & 0x0F == 8 and (head[0] * 256 + head[1]) % 31 == 0:
        return 'zlib'
    return None


def _decompress(data, compression):
    if compression == 'auto':
        compression = sniff_compression(data)
    if compression is None:
        return data
    try:
        if compression == 'gzip':
            return gzip.decompress(data)
        if compression == 'zlib':
            return zlib.decompress(data)
    except (OSError, EOFError, zlib.error) as e:
        raise DecompressionFailed(f'{compression}: {e}') from e
    raise ValueError(f'unknown compression {compression!r}')


def _read_root(buff):
    try:
        return TagRoot.from_buff(buff)
    except RecursionError as e:
        # max_depth set above what the interpreter stack allows
        raise RecursionLimitExceeded(buff.max_depth) from e


def _check_trailing(buff, root, strict):
    if buff.at_end():
        return root
    count = len(buff.read_remaining())
    if strict:
        raise TrailingData(count)
    note = f'{count} bytes after the root tag ignored'
    logger.warning(note)
    buff.notes.append(note)
    root.notes = tuple(buff.notes)
    return root


def decode_tag_tree(data, compression='auto', max_depth=DEFAULT_MAX_DEPTH, strict=True):
    """
    Decodes one NBT tree from *data* and returns its ``TagRoot``.

    *compression* is ``'auto'``, ``'gzip'``, ``'zlib'`` or ``None``. Bytes left
    after the root are an error unless *strict* is false, in which case they
    are recorded in ``TagRoot.notes``.
    """
    buff = Buffer(_decompress(bytes(data), compression), max_depth=max_depth)
    root = _check_trailing(buff, _read_root(buff), strict)
    logger.debug('decoded root %r with %d entries', root.name, len(root.body))
    return root


# Files -----------------------------------------------------------------------

class _Rewound(object):
    def __init__(self, head, fd):
        self.head = head
        self.fd = fd

    def read(self, size=-1):
        head = self.head
        if size is None or size < 0:
            self.head = b""
            return head + self.fd.read()
        if head:
            self.head = head[size:]
            head = head[:size]
            if len(head) == size:
                return head
            return head + self.fd.read(size - len(head))
        return self.fd.read(size)


class NBTFile(object):
    root_tag = None

    def __init__(self, root_tag):
        self.root_tag = root_tag

    @classmethod
    def load(cls, fd, compression='auto', max_depth=DEFAULT_MAX_DEPTH, strict=None):
        """
        Decodes one root from the binary file object *fd*.

        With *strict* left as None the stream is read no further than the end
        of the root, so an uncompressed stream holding several roots can be
        loaded repeatedly. Otherwise the rest of the stream is consumed and
        checked as in ``decode_tag_tree``.
        """
        if compression == 'auto':
            head = fd.read(2)
            compression = sniff_compression(head)
            fd = _Rewound(head, fd)

        if compression == 'gzip':
            buff = Buffer(fd=gzip.GzipFile(fileobj=fd, mode='rb'), max_depth=max_depth)
        elif compression == 'zlib':
            buff = Buffer(_decompress(fd.read(), 'zlib'), max_depth=max_depth)
        elif compression is None:
            buff = Buffer(fd=fd, max_depth=max_depth)
        else:
            raise ValueError(f'unknown compression {compression!r}')
        root = _read_root(buff)
        if strict is not None:
            root = _check_trailing(buff, root, strict)
        return cls(root)


# Debug -----------------------------------------------------------------------

def alt_repr(tag, level=0):
    """
    Returns a human-readable, indented representation of a tag in the
    ``TAG_Compound("name"): 2 entries`` style of the original NBT docs.
    """
    name = lambda kind: type(kind).__name__.replace("Tag", "TAG_")

    if isinstance(tag, _ArrayTag):
        return "%s%s: %d entries" % (
            "  " * level,
            name(tag),
            len(tag.value))

    elif isinstance(tag, TagList):
        return "%s%s: %d entries\n%s{\n%s\n%s}" % (
            "  " * level,
            name(tag),
            len(tag.value),
            "  " * level,
            u"\n".join(alt_repr(tag, level+1) for tag in tag.value),
            "  " * level)

    elif isinstance(tag, TagRoot):
        return u"\n".join(
                alt_repr(tag, level).replace(': ', '("%s"): ' % name, 1)
                for name, tag in tag.value.items())

    elif isinstance(tag, TagCompound):
        return "%s%s: %d entries\n%s{\n%s\n%s}" % (
            "  " * level,
            name(tag),
            len(tag.value),
            "  " * level,
            u"\n".join(
                alt_repr(tag, level+1).replace(': ', '("%s"): ' % name, 1)
                for name, tag in tag.value.items()),
            "  " * level)

    elif isinstance(tag, TagString):
        return '%s%s: "%s"' % (
            "  " * level,
            name(tag),
            tag.value)

    else:
        return "%s%s: %r" % (
            "  " * level,
            name(tag),
            tag.value)
