"""Tests for the adjacency map binary record."""

import struct

import pytest

from py_octadj.core.exceptions import CorruptDataError
from py_octadj.core.node_info import NodeInfoTable
from py_octadj.core.octree_key import OctreeKey, Point3D
from py_octadj.storage import codec

A = OctreeKey(32768, 32768, 32768)
B = OctreeKey(32769, 32768, 32768)
C = OctreeKey(32771, 32769, 32769)


@pytest.fixture
def record():
    adjacencies = {A: [B], B: [A, C]}
    nodes_info = NodeInfoTable()
    nodes_info.record(A, 0.5, Point3D(0.25, 0.25, 0.25))
    nodes_info.record(B, 0.5, Point3D(0.75, 0.25, 0.25))
    nodes_info.record(C, 1.0, Point3D(1.5, 0.5, 0.5))
    return adjacencies, nodes_info, "/data/maps/ñandú.ot"


class TestEncodeDecode:
    """Record layout and decoding."""

    def test_round_trip(self, record):
        """Test that decoding restores the encoded maps and path."""
        adjacencies, nodes_info, path = record
        decoded = codec.decode(codec.encode(adjacencies, nodes_info, path))

        assert decoded.adjacencies == adjacencies
        assert decoded.nodes_info == nodes_info
        assert decoded.octree_path == path

    def test_decoded_keys_are_shared(self, record):
        """Test that equal decoded keys are the same object."""
        decoded = codec.decode(codec.encode(*record))
        a_key = next(k for k in decoded.adjacencies if k == A)

        assert decoded.adjacencies[B][0] is a_key
        assert next(k for k in decoded.nodes_info if k == A) is a_key

    def test_empty_record(self):
        """Test encoding of an empty map."""
        data = codec.encode({}, NodeInfoTable(), "")
        decoded = codec.decode(data)

        assert decoded.adjacencies == {}
        assert len(decoded.nodes_info) == 0
        assert decoded.octree_path == ""
        # header, then the key, node and path byte counts
        assert len(data) == 8 + 3 * 4

    def test_layout(self, record):
        """Test the byte layout of a small record."""
        data = codec.encode(*record)

        assert data[:4] == codec.MAGIC
        assert struct.unpack_from("<H", data, 4)[0] == codec.FORMAT_VERSION
        assert struct.unpack_from("<I", data, 8)[0] == 2
        assert data.endswith(record[2].encode("utf-8"))

    def test_key_out_of_range(self):
        """Test that keys wider than 16 bits are rejected."""
        with pytest.raises(ValueError):
            codec.encode({OctreeKey(70000, 0, 0): []}, NodeInfoTable(), "x")


class TestCorruptRecords:
    """Every malformed record is reported as CorruptDataError."""

    def test_bad_magic(self, record):
        """Test that a wrong magic is rejected."""
        data = b"XXXX" + codec.encode(*record)[4:]

        with pytest.raises(CorruptDataError, match="magic"):
            codec.decode(data)

    def test_unsupported_version(self, record):
        """Test that an unknown version is rejected."""
        data = bytearray(codec.encode(*record))
        struct.pack_into("<H", data, 4, 99)

        with pytest.raises(CorruptDataError, match="version"):
            codec.decode(bytes(data))

    @pytest.mark.parametrize("cut", [3, 10, 20, 60])
    def test_truncated(self, record, cut):
        """Test that a truncated record is rejected."""
        data = codec.encode(*record)

        with pytest.raises(CorruptDataError):
            codec.decode(data[:cut])

    def test_truncated_path(self, record):
        """Test that a truncated path is rejected."""
        data = codec.encode(*record)

        with pytest.raises(CorruptDataError):
            codec.decode(data[:-1])

    def test_trailing_bytes(self, record):
        """Test that trailing bytes are rejected."""
        with pytest.raises(CorruptDataError, match="trailing"):
            codec.decode(codec.encode(*record) + b"\x00")

    def test_invalid_utf8_path(self):
        """Test that a non UTF-8 path is rejected."""
        data = codec.encode({}, NodeInfoTable(), "ab")
        data = data[:-2] + b"\xff\xfe"

        with pytest.raises(CorruptDataError, match="UTF-8"):
            codec.decode(data)

    def test_not_a_record(self):
        """Test that arbitrary bytes are rejected."""
        with pytest.raises(CorruptDataError):
            codec.decode(b"")
