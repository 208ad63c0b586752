class ReaderError(Exception):
    pass


# Tag tree --------------------------------------------------------------------

class DecodeError(ReaderError):
    pass


class UnexpectedEof(DecodeError):
    def __init__(self, wanted=None, available=None):
        self.wanted = wanted
        self.available = available
        if wanted is None:
            msg = "unexpected end of data"
        else:
            msg = f"unexpected end of data: wanted {wanted} bytes, {available} available"
        super().__init__(msg)


class InvalidTagKind(DecodeError):
    def __init__(self, kind, reason=None):
        self.kind = kind
        super().__init__(reason or f"invalid tag kind {kind}")


class InvalidUtf8(DecodeError):
    def __init__(self, data):
        self.data = data
        super().__init__(f"invalid modified UTF-8 string: {data[:32]!r}")


class NegativeArrayLength(DecodeError):
    def __init__(self, length):
        self.length = length
        super().__init__(f"negative array length {length}")


class RecursionLimitExceeded(DecodeError):
    def __init__(self, max_depth):
        self.max_depth = max_depth
        super().__init__(f"tags nested deeper than {max_depth} levels")


class DecompressionFailed(DecodeError):
    pass


class DuplicateKey(DecodeError):
    def __init__(self, name):
        self.name = name
        super().__init__(f"duplicate compound key {name!r}")


class TrailingData(DecodeError):
    def __init__(self, count):
        self.count = count
        super().__init__(f"{count} bytes left after the root tag")


# Schematic -------------------------------------------------------------------

class SchematicError(ReaderError):
    pass


class MissingField(SchematicError):
    def __init__(self, name):
        self.name = name
        super().__init__(f"missing required field {name!r}")


class InvalidFieldType(SchematicError):
    def __init__(self, name, expected, actual):
        self.name = name
        self.expected = expected
        self.actual = actual
        super().__init__(f"field {name!r} should be {expected}, got {actual}")


class InvalidField(SchematicError):
    def __init__(self, name, reason):
        self.name = name
        self.reason = reason
        super().__init__(f"invalid field {name!r}: {reason}")


class UnsupportedVersion(SchematicError):
    def __init__(self, version):
        self.version = version
        super().__init__(f"unsupported schematic version {version}")


class InvalidDimensions(SchematicError):
    def __init__(self, width, height, length):
        self.width = width
        self.height = height
        self.length = length
        super().__init__(f"invalid dimensions {width}x{height}x{length}")


class PaletteGap(SchematicError):
    def __init__(self, missing):
        self.missing = missing
        super().__init__(f"palette indices are not contiguous, missing {missing}")


class DuplicatePaletteEntry(SchematicError):
    def __init__(self, entry):
        self.entry = entry
        super().__init__(f"duplicate palette entry {entry!r}")


class InvalidBlockState(SchematicError):
    def __init__(self, entry):
        self.entry = entry
        super().__init__(f"malformed block state {entry!r}")


class TruncatedBlockData(SchematicError):
    def __init__(self, expected, decoded):
        self.expected = expected
        self.decoded = decoded
        super().__init__(f"block data ends after {decoded} of {expected} cells")


class TrailingBytes(SchematicError):
    def __init__(self, count):
        self.count = count
        super().__init__(f"{count} unused bytes after the last cell of block data")


class MalformedVarint(SchematicError):
    def __init__(self, offset):
        self.offset = offset
        super().__init__(f"varint at byte {offset} does not fit in 32 bits")


class InvalidPaletteReference(SchematicError):
    def __init__(self, index, max):
        self.index = index
        self.max = max
        super().__init__(f"palette index {index} out of range for a palette of size {max}")


class UnreferencedPaletteEntry(SchematicError):
    def __init__(self, indices):
        self.indices = indices
        super().__init__(f"palette entries {indices} are never referenced")


class BlockEntityOutOfBounds(SchematicError):
    def __init__(self, x, y, z):
        self.x, self.y, self.z = x, y, z
        super().__init__(f"block entity at ({x}, {y}, {z}) lies outside the volume")


class DuplicateBlockEntity(SchematicError):
    def __init__(self, x, y, z):
        self.x, self.y, self.z = x, y, z
        super().__init__(f"more than one block entity at ({x}, {y}, {z})")


class OutOfBounds(SchematicError):
    def __init__(self, x, y, z):
        self.x, self.y, self.z = x, y, z
        super().__init__(f"({x}, {y}, {z}) lies outside the volume")
