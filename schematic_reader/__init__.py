from schematic_reader.errors import *
from schematic_reader.types.buffer import DEFAULT_MAX_DEPTH
from schematic_reader.types.nbt import NBTFile, TagRoot, decode_tag_tree
from schematic_reader.types.schematic import (
    BlockEntity,
    BlockState,
    BlockVolume,
    Entity,
    Palette,
    Schematic,
    interpret,
    read_schematic,
    read_schematic_file,
)
