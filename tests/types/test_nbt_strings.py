# -*- coding: utf-8 -*-
import gzip
import io

import pytest

from schematic_reader.types.nbt import *


stringtest = TagRoot.from_body(TagCompound({
    u"empty": TagString(u""),
    u"hello_world": TagString(u"Hello world!"),
    u"null": TagString(u"\0"),
    u"surrogate_pair": TagString(u"\U0001f30a"),
}))


stringtest_alt_repr = u"""
TAG_Compound(""): 4 entries
{
  TAG_String("empty"): ""
  TAG_String("hello_world"): "Hello world!"
  TAG_String("null"): "\x00"
  TAG_String("surrogate_pair"): "\U0001f30a"
}
"""


def test_empty_encode():
    assert TagString(u'').to_bytes() == b'\x00\x00'


def test_hello_world_encode():
    assert TagString(u'Hello world!').to_bytes() == b'\x00\x0cHello world!'


def test_null_encode():
    assert TagString(u'\0').to_bytes() == b'\x00\x02\xc0\x80'


def test_surrogate_pair_encode():
    assert TagString(u'\U0001f30a').to_bytes() == b'\x00\x06\xed\xa1\xbc\xed\xbc\x8a'


def test_null_decode():
    assert TagString.from_bytes(b'\x00\x02\xc0\x80').value == u'\0'


def test_surrogate_pair_decode():
    assert TagString.from_bytes(b'\x00\x06\xed\xa1\xbc\xed\xbc\x8a').value == u'\U0001f30a'


def test_invalid_byte_decode():
    with pytest.raises(InvalidUtf8):
        TagString.from_bytes(b'\x00\x01\xff')


def test_four_byte_form_decode():
    with pytest.raises(InvalidUtf8):
        TagString.from_bytes(b'\x00\x04\xf0\x9f\x8c\x8a')


def test_stringtest_alt_repr():
    fd = io.BytesIO(gzip.compress(stringtest.to_bytes()))
    loaded = NBTFile.load(fd).root_tag
    assert alt_repr(loaded) == stringtest_alt_repr.strip()
