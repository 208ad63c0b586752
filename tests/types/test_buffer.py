import io

import pytest

from schematic_reader.errors import MalformedVarint, TruncatedBlockData, UnexpectedEof
from schematic_reader.types.buffer import Buffer, decode_varints


varint_vectors = [
    (0, b'\x00'),
    (1, b'\x01'),
    (2, b'\x02'),
    (127, b'\x7f'),
    (128, b'\x80\x01'),
    (255, b'\xff\x01'),
    (25565, b'\xdd\xc7\x01'),
    (2097151, b'\xff\xff\x7f'),
    (2147483647, b'\xff\xff\xff\xff\x07'),
    (4294967295, b'\xff\xff\xff\xff\x0f'),
]


@pytest.mark.parametrize('number, data', varint_vectors)
def test_unpack_varint(number, data):
    buff = Buffer(data)
    assert buff.unpack_varint() == number
    assert buff.at_end()


@pytest.mark.parametrize('number, data', varint_vectors)
def test_pack_varint(number, data):
    assert Buffer.pack_varint(number) == data


def test_pack_varint_range():
    with pytest.raises(ValueError):
        Buffer.pack_varint(-1)
    with pytest.raises(ValueError):
        Buffer.pack_varint(1 << 32)


def test_unpack_varint_too_long():
    with pytest.raises(MalformedVarint):
        Buffer(b'\x80\x80\x80\x80\x80\x00').unpack_varint()


def test_decode_varints():
    data = b''.join(data for _, data in varint_vectors)
    values, used = decode_varints(data + b'\x05', len(varint_vectors))
    assert values.tolist() == [number for number, _ in varint_vectors]
    assert used == len(data)


def test_decode_varints_empty():
    values, used = decode_varints(b'', 0)
    assert len(values) == 0
    assert used == 0


def test_decode_varints_truncated():
    with pytest.raises(TruncatedBlockData) as info:
        decode_varints(b'\x01\x80', 2)
    assert info.value.expected == 2
    assert info.value.decoded == 1


def test_decode_varints_too_long():
    with pytest.raises(MalformedVarint) as info:
        decode_varints(b'\x00\x80\x80\x80\x80\x80\x00', 2)
    assert info.value.offset == 1


def test_read_past_end():
    buff = Buffer(b'\x00\x01')
    with pytest.raises(UnexpectedEof):
        buff.unpack('i')


def test_unpack():
    buff = Buffer(Buffer.pack('hi', -2, 70000))
    assert buff.unpack('hi') == (-2, 70000)
    assert len(buff) == 0


def test_stream_read():
    buff = Buffer(fd=io.BytesIO(b'abc'))
    assert buff.read(2) == b'ab'
    assert not buff.at_end()
    assert buff.read(1) == b'c'
    assert buff.at_end()
    with pytest.raises(UnexpectedEof):
        buff.read(1)


def test_varint_fifth_byte_overflow():
    with pytest.raises(MalformedVarint):
        Buffer(b'\xff\xff\xff\xff\x7f').unpack_varint()
    with pytest.raises(MalformedVarint) as info:
        decode_varints(b'\x00\xff\xff\xff\xff\x1f', 2)
    assert info.value.offset == 1


def test_read_remaining():
    buff = Buffer(b'ab', fd=io.BytesIO(b'cd'))
    assert buff.read(1) == b'a'
    assert buff.read_remaining() == b'bcd'
    assert buff.at_end()
