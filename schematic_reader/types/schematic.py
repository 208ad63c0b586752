"""
Turns a decoded NBT tree into a queryable ``Schematic``.

Sponge schematic versions 1, 2 and 3 are understood. Version 3 nests its
payload in a ``Schematic`` compound under an unnamed root and groups block
fields under ``Blocks``; versions 1 and 2 keep everything at the top level.
In every version the palette may be either a compound mapping block states to
indices or a list of block states whose positions are the indices.

Cells are stored with x varying fastest, then z, then y: the cell ``(x, y, z)``
lives at flat index ``x + z * width + y * width * length``.
"""

import logging
import re
from collections import namedtuple

import numpy as np

from schematic_reader.errors import (
    BlockEntityOutOfBounds,
    DuplicateBlockEntity,
    DuplicatePaletteEntry,
    InvalidBlockState,
    InvalidDimensions,
    InvalidField,
    InvalidFieldType,
    InvalidPaletteReference,
    MissingField,
    OutOfBounds,
    PaletteGap,
    TrailingBytes,
    TruncatedBlockData,
    UnreferencedPaletteEntry,
    UnsupportedVersion,
)
from schematic_reader.types.buffer import DEFAULT_MAX_DEPTH, decode_varints
from schematic_reader.types.nbt import (
    NBTFile,
    TagByteArray,
    TagCompound,
    TagInt,
    TagIntArray,
    TagKind,
    TagList,
    TagRoot,
    TagShort,
    TagString,
    decode_tag_tree,
)

logger = logging.getLogger(__name__)

SUPPORTED_VERSIONS = (1, 2, 3)

BlockEntity = namedtuple('BlockEntity', 'x y z id data')
Entity = namedtuple('Entity', 'x y z id data')

_resource = re.compile(r'(?:([a-z0-9_.-]+):)?([a-z0-9_./-]+)')
_block_state = re.compile(r'([^\[\]]+)(?:\[([^\[\]]*)\])?')


# Block states ----------------------------------------------------------------

class BlockState(namedtuple('BlockState', 'id properties')):
    """
    A namespaced block id plus its properties, as written in palettes:
    ``minecraft:chest[facing=north,type=single]``. ``properties`` is a tuple
    of ``(key, value)`` pairs in file order.
    """
    __slots__ = ()

    @classmethod
    def parse(cls, text):
        match = _block_state.fullmatch(text)
        if not match:
            raise InvalidBlockState(text)
        resource, body = match.groups()
        resource = _parse_resource(resource)
        if resource is None:
            raise InvalidBlockState(text)
        if body is None:
            return cls(resource, ())

        properties = []
        seen = set()
        for pair in body.split(','):
            key, sep, value = pair.partition('=')
            if not sep or not key or not value or '=' in value or key in seen:
                raise InvalidBlockState(text)
            seen.add(key)
            properties.append((key, value))
        return cls(resource, tuple(properties))

    def property(self, key, default=None):
        for name, value in self.properties:
            if name == key:
                return value
        return default

    def __str__(self):
        if not self.properties:
            return self.id
        inner = ','.join(f'{key}={value}' for key, value in self.properties)
        return f'{self.id}[{inner}]'


def _parse_resource(text):
    match = _resource.fullmatch(text)
    if not match:
        return None
    namespace, path = match.groups()
    return f'{namespace or "minecraft"}:{path}'


# Palette and volume ----------------------------------------------------------

class Palette(object):
    """Block-state strings indexed by their position; indices run from 0."""
    __slots__ = ('_entries', '_indices')

    def __init__(self, entries):
        self._entries = tuple(entries)
        self._indices = {}
        for index, entry in enumerate(self._entries):
            if entry in self._indices:
                raise DuplicatePaletteEntry(entry)
            self._indices[entry] = index

    def __len__(self):
        return len(self._entries)

    def __iter__(self):
        return iter(self._entries)

    def __contains__(self, entry):
        return entry in self._indices

    def __getitem__(self, index):
        if not 0 <= index < len(self._entries):
            raise InvalidPaletteReference(index, len(self._entries))
        return self._entries[index]

    def __eq__(self, other):
        if not isinstance(other, Palette):
            return NotImplemented
        return self._entries == other._entries

    def __hash__(self):
        return hash(self._entries)

    def __repr__(self):
        return "%s(%r)" % (type(self).__name__, list(self._entries))

    def index_of(self, entry):
        return self._indices[entry]

    def state(self, index):
        return BlockState.parse(self[index])


class BlockVolume(object):
    """
    Dense grid of palette indices backed by a read-only ``uint32`` array of
    shape ``(height, length, width)``.
    """
    __slots__ = ('_indices',)

    def __init__(self, width, height, length, indices):
        if width <= 0 or height <= 0 or length <= 0:
            raise InvalidDimensions(width, height, length)
        self._indices = np.array(indices, dtype=np.uint32).reshape(height, length, width)
        self._indices.flags.writeable = False

    @property
    def width(self):
        return self._indices.shape[2]

    @property
    def height(self):
        return self._indices.shape[0]

    @property
    def length(self):
        return self._indices.shape[1]

    @property
    def indices(self):
        return self._indices

    def __len__(self):
        return self.width * self.height * self.length

    def __getitem__(self, position):
        return self.index_at(*position)

    def dimensions(self):
        return self.width, self.height, self.length

    def contains(self, x, y, z):
        return 0 <= x < self.width and 0 <= y < self.height and 0 <= z < self.length

    def check(self, x, y, z):
        if not self.contains(x, y, z):
            raise OutOfBounds(x, y, z)

    def index_at(self, x, y, z):
        self.check(x, y, z)
        return int(self._indices[y, z, x])


# Schematic -------------------------------------------------------------------

def _copied(entry):
    # Tag data stays owned by the schematic; callers get their own copy.
    return entry._replace(data=entry.data.deep_copy())


class Schematic(object):
    __slots__ = ('_volume', '_palette', '_version', '_data_version', '_offset',
                 '_metadata', '_block_entities', '_block_entity_index',
                 '_entities', '_biomes', '_biome_palette', '_warnings')

    def __init__(self, volume, palette, version, data_version=None,
                 offset=(0, 0, 0), metadata=None, block_entities=(),
                 entities=(), biomes=None, biome_palette=None, warnings=()):
        self._volume = volume
        self._palette = palette
        self._version = version
        self._data_version = data_version
        self._offset = tuple(offset)
        self._metadata = metadata
        self._block_entities = tuple(block_entities)
        self._block_entity_index = {(be.x, be.y, be.z): be for be in self._block_entities}
        self._entities = tuple(entities)
        self._biomes = biomes
        self._biome_palette = biome_palette
        self._warnings = tuple(warnings)

    def __repr__(self):
        return "<%s v%d %dx%dx%d, %d palette entries, %d block entities>" % (
            type(self).__name__, self._version, *self.dimensions(),
            len(self._palette), len(self._block_entities))

    @property
    def width(self):
        return self._volume.width

    @property
    def height(self):
        return self._volume.height

    @property
    def length(self):
        return self._volume.length

    @property
    def volume(self):
        return self._volume

    @property
    def palette(self):
        return self._palette

    @property
    def version(self):
        return self._version

    @property
    def data_version(self):
        return self._data_version

    @property
    def offset(self):
        return self._offset

    @property
    def metadata(self):
        if self._metadata is None:
            return None
        return self._metadata.deep_copy()

    @property
    def warnings(self):
        return self._warnings

    @property
    def lenient(self):
        return bool(self._warnings)

    def dimensions(self):
        return self._volume.dimensions()

    def block_at(self, x, y, z):
        return self._volume.index_at(x, y, z)

    def block_state_at(self, x, y, z):
        return self._palette[self.block_at(x, y, z)]

    def palette_entry(self, index):
        return self._palette[index]

    def block_entities(self):
        for entry in self._block_entities:
            yield _copied(entry)

    def block_entity_at(self, x, y, z):
        self._volume.check(x, y, z)
        entry = self._block_entity_index.get((x, y, z))
        return None if entry is None else _copied(entry)

    def entities(self):
        for entry in self._entities:
            yield _copied(entry)

    def biome_at(self, x, y, z):
        """Returns the biome id at a cell, or None if the file has no biomes."""
        self._volume.check(x, y, z)
        if self._biomes is None:
            return None
        if self._biomes.height == 1:
            y = 0
        return self._biome_palette[self._biomes.index_at(x, y, z)]


# Interpretation --------------------------------------------------------------

def _type_name(expected):
    if isinstance(expected, tuple):
        return ' or '.join(kind.__name__ for kind in expected)
    return expected.__name__


def _field(compound, name, expected, path=None, required=True):
    path = path or name
    tag = compound.value.get(name)
    if tag is None:
        if required:
            raise MissingField(path)
        return None
    if not isinstance(tag, expected):
        raise InvalidFieldType(path, _type_name(expected), type(tag).__name__)
    return tag


def _schematic_body(root):
    if isinstance(root, TagRoot):
        body = root.body
    elif isinstance(root, TagCompound):
        body = root
    else:
        raise InvalidFieldType('<root>', 'TagCompound', type(root).__name__)

    nested = body.value.get('Schematic')
    if isinstance(nested, TagCompound):
        return nested
    return body


def _read_version(body):
    version = _field(body, 'Version', TagInt).value
    if version not in SUPPORTED_VERSIONS:
        raise UnsupportedVersion(version)

    data_version = _field(body, 'DataVersion', TagInt, required=version > 1)
    if data_version is None:
        return version, None
    if data_version.value <= 0:
        raise InvalidField('DataVersion', f'must be positive, got {data_version.value}')
    return version, data_version.value


def _read_dimensions(body):
    dimensions = []
    for name in ('Width', 'Height', 'Length'):
        tag = _field(body, name, (TagShort, TagInt))
        if isinstance(tag, TagShort):
            dimensions.append(tag.value & 0xFFFF)
        else:
            dimensions.append(tag.value)
    if min(dimensions) <= 0:
        raise InvalidDimensions(*dimensions)
    return tuple(dimensions)


def _read_offset(body):
    tag = _field(body, 'Offset', TagIntArray, required=False)
    if tag is None:
        return (0, 0, 0)
    if len(tag) != 3:
        raise InvalidField('Offset', f'expected 3 coordinates, got {len(tag)}')
    return tuple(tag.value.tolist())


def _palette_from_compound(tag, path):
    by_index = {}
    for entry, index_tag in tag.value.items():
        if not isinstance(index_tag, TagInt):
            raise InvalidFieldType(f'{path}.{entry}', 'TagInt', type(index_tag).__name__)
        if index_tag.value in by_index:
            raise DuplicatePaletteEntry(entry)
        by_index[index_tag.value] = entry

    missing = [i for i in range(len(by_index)) if i not in by_index]
    if missing:
        raise PaletteGap(missing)
    return [by_index[i] for i in range(len(by_index))]


def _palette_from_list(tag, path):
    if tag.kind not in (TagKind.STRING, TagKind.END):
        raise InvalidFieldType(path, 'TagList of TagString', f'TagList of {tag.kind.name}')
    return [entry.value for entry in tag.value]


def _read_palette(container, name, path, max_name=None):
    tag = _field(container, name, (TagCompound, TagList), path)
    if isinstance(tag, TagCompound):
        palette = Palette(_palette_from_compound(tag, path))
    else:
        palette = Palette(_palette_from_list(tag, path))

    if max_name is not None:
        palette_max = _field(container, max_name, TagInt, required=False)
        if palette_max is not None and palette_max.value != len(palette):
            raise InvalidField(max_name, f'declares {palette_max.value} entries, palette has {len(palette)}')
    return palette


def _check_block_states(palette):
    for entry in palette:
        BlockState.parse(entry)


def _check_biomes(palette, path):
    for entry in palette:
        if _parse_resource(entry) is None:
            raise InvalidField(path, f'malformed biome id {entry!r}')


def _downgrade(error, warnings):
    logger.warning('%s', error)
    warnings.append(str(error))


def _read_indices(container, name, path, count, palette, strict, warnings):
    tag = _field(container, name, (TagByteArray, TagIntArray), path)
    if isinstance(tag, TagByteArray):
        values, used = decode_varints(tag.value, count)
        extra = len(tag) - used
    else:
        if len(tag) < count:
            raise TruncatedBlockData(count, len(tag))
        values = tag.value[:count]
        negative = np.flatnonzero(values < 0)
        if len(negative):
            raise InvalidPaletteReference(int(values[negative[0]]), len(palette))
        values = values.astype(np.uint64)
        extra = len(tag) - count

    if extra:
        error = TrailingBytes(extra)
        if strict:
            raise error
        _downgrade(error, warnings)

    size = len(palette)
    out_of_range = np.flatnonzero(values >= size)
    if len(out_of_range):
        raise InvalidPaletteReference(int(values[out_of_range[0]]), size)

    referenced = np.zeros(size, dtype=bool)
    referenced[values.astype(np.intp)] = True
    if not referenced.all():
        error = UnreferencedPaletteEntry(np.flatnonzero(~referenced).tolist())
        if strict:
            raise error
        _downgrade(error, warnings)
    return values.astype(np.uint32)


def _entry_data(entry, version, path):
    if version >= 3:
        data = _field(entry, 'Data', TagCompound, f'{path}.Data', required=False)
        return TagCompound({}) if data is None else data.deep_copy()
    return TagCompound({
        name: tag.deep_copy()
        for name, tag in entry.value.items()
        if name not in ('Pos', 'Id')})


def _entry_list(container, name, path):
    tag = _field(container, name, TagList, path, required=False)
    if tag is None:
        return []
    if tag.kind not in (TagKind.COMPOUND, TagKind.END):
        raise InvalidFieldType(path, 'TagList of TagCompound', f'TagList of {tag.kind.name}')
    return tag.value


def _read_block_entities(container, name, path, volume, version):
    found = {}
    for i, entry in enumerate(_entry_list(container, name, path)):
        entry_path = f'{path}[{i}]'
        pos = _field(entry, 'Pos', TagIntArray, f'{entry_path}.Pos')
        if len(pos) != 3:
            raise InvalidField(f'{entry_path}.Pos', f'expected 3 coordinates, got {len(pos)}')
        x, y, z = pos.value.tolist()
        if not volume.contains(x, y, z):
            raise BlockEntityOutOfBounds(x, y, z)
        if (x, y, z) in found:
            raise DuplicateBlockEntity(x, y, z)
        id_tag = _field(entry, 'Id', TagString, f'{entry_path}.Id', required=False)
        found[x, y, z] = BlockEntity(
            x, y, z,
            None if id_tag is None else id_tag.value,
            _entry_data(entry, version, entry_path))
    return tuple(found.values())


def _read_entities(body, version):
    entities = []
    for i, entry in enumerate(_entry_list(body, 'Entities', 'Entities')):
        entry_path = f'Entities[{i}]'
        pos = _field(entry, 'Pos', TagList, f'{entry_path}.Pos')
        if pos.kind != TagKind.DOUBLE or len(pos) != 3:
            raise InvalidField(f'{entry_path}.Pos', 'expected a list of 3 doubles')
        x, y, z = (tag.value for tag in pos.value)
        id_tag = _field(entry, 'Id', TagString, f'{entry_path}.Id', required=False)
        entities.append(Entity(
            x, y, z,
            None if id_tag is None else id_tag.value,
            _entry_data(entry, version, entry_path)))
    return tuple(entities)


def _read_biomes(body, version, dimensions, strict, warnings):
    width, height, length = dimensions
    if version == 3:
        biomes = _field(body, 'Biomes', TagCompound, required=False)
        if biomes is None:
            return None, None
        palette = _read_palette(biomes, 'Palette', 'Biomes.Palette')
        _check_biomes(palette, 'Biomes.Palette')
        indices = _read_indices(biomes, 'Data', 'Biomes.Data', width * height * length,
                                palette, strict, warnings)
        return BlockVolume(width, height, length, indices), palette

    if not any(name in body.value for name in ('BiomePalette', 'BiomeData', 'BiomePaletteMax')):
        return None, None
    palette = _read_palette(body, 'BiomePalette', 'BiomePalette', 'BiomePaletteMax')
    _check_biomes(palette, 'BiomePalette')
    # Version 2 biomes are a single layer over x and z.
    indices = _read_indices(body, 'BiomeData', 'BiomeData', width * length,
                            palette, strict, warnings)
    return BlockVolume(width, 1, length, indices), palette


def interpret(root, strict=True):
    """
    Builds a ``Schematic`` from a decoded tree (a ``TagRoot`` or the root's
    ``TagCompound``).

    Validation fails closed: any inconsistency between the declared
    dimensions, the palette and the block data raises a ``SchematicError``.
    With *strict* false, unused trailing block data and unreferenced palette
    entries are recorded in ``Schematic.warnings`` instead.
    """
    warnings = list(getattr(root, 'notes', ()))
    body = _schematic_body(root)
    version, data_version = _read_version(body)
    width, height, length = dimensions = _read_dimensions(body)
    offset = _read_offset(body)
    metadata = _field(body, 'Metadata', TagCompound, required=False)
    count = width * height * length

    if version == 3:
        blocks = _field(body, 'Blocks', TagCompound)
        palette = _read_palette(blocks, 'Palette', 'Blocks.Palette')
        _check_block_states(palette)
        indices = _read_indices(blocks, 'Data', 'Blocks.Data', count, palette, strict, warnings)
        volume = BlockVolume(width, height, length, indices)
        block_entities = _read_block_entities(
            blocks, 'BlockEntities', 'Blocks.BlockEntities', volume, version)
    else:
        palette = _read_palette(body, 'Palette', 'Palette', 'PaletteMax')
        _check_block_states(palette)
        indices = _read_indices(body, 'BlockData', 'BlockData', count, palette, strict, warnings)
        volume = BlockVolume(width, height, length, indices)
        name = 'BlockEntities' if version == 2 else 'TileEntities'
        block_entities = _read_block_entities(body, name, name, volume, version)

    entities = _read_entities(body, version)
    biomes, biome_palette = _read_biomes(body, version, dimensions, strict, warnings)

    logger.debug('interpreted version %d schematic of %dx%dx%d with %d palette entries',
                 version, width, height, length, len(palette))
    return Schematic(
        volume, palette, version,
        data_version=data_version,
        offset=offset,
        metadata=None if metadata is None else metadata.deep_copy(),
        block_entities=block_entities,
        entities=entities,
        biomes=biomes,
        biome_palette=biome_palette,
        warnings=warnings)


def read_schematic(data, compression='auto', max_depth=DEFAULT_MAX_DEPTH, strict=True):
    """Decodes *data* and interprets it as a schematic."""
    return interpret(decode_tag_tree(data, compression, max_depth, strict), strict)


def read_schematic_file(fd, compression='auto', max_depth=DEFAULT_MAX_DEPTH, strict=True):
    """Reads one schematic from the binary file object *fd*."""
    return interpret(NBTFile.load(fd, compression, max_depth, strict).root_tag, strict)
