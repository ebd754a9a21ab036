"""
Binary record format for adjacency maps.

Layout (little endian)::

    b"OADJ" | u16 version | u16 reserved
    u32 n_keys | n_keys * key | n_keys * u32 neighbour count | neighbours * key
    u32 n_nodes | n_nodes * (key, f64 size, 3 * f64 center)
    u32 path length | UTF-8 path

A key is three u16 values. Neighbour lists are stored flattened, in the same
order as their source keys.
"""

import struct
from typing import Dict, List, NamedTuple, Tuple

import numpy as np

from ..core.exceptions import CorruptDataError
from ..core.node_info import NodeInfo, NodeInfoTable
from ..core.octree_key import KeyCache, OctreeKey, Point3D

MAGIC = b"OADJ"
FORMAT_VERSION = 1

_HEADER = struct.Struct("<4sHH")
_COUNT = struct.Struct("<I")

KEY_DTYPE = np.dtype("<u2")
COUNT_DTYPE = np.dtype("<u4")
NODE_DTYPE = np.dtype([("key", "<u2", (3,)), ("size", "<f8"), ("center", "<f8", (3,))])


class DecodedRecord(NamedTuple):
    adjacencies: Dict[OctreeKey, List[OctreeKey]]
    nodes_info: NodeInfoTable
    octree_path: str


def _keys_array(keys) -> np.ndarray:
    array = np.array([tuple(k) for k in keys], dtype=np.int64).reshape(-1, 3)
    if array.size and (array.min() < 0 or array.max() > 0xFFFF):
        raise ValueError("Octree key component does not fit in 16 bits")
    return array.astype(KEY_DTYPE)


def encode(adjacencies: Dict[OctreeKey, List[OctreeKey]], nodes_info: NodeInfoTable,
           octree_path: str) -> bytes:
    """
    Serialize an adjacency map into a single binary record.

    Args:
        adjacencies: Neighbour lists per key
        nodes_info: Size and center per key
        octree_path: Filesystem path of the backing octree

    Returns:
        Encoded record
    """
    parts = [_HEADER.pack(MAGIC, FORMAT_VERSION, 0)]

    sources = list(adjacencies.keys())
    counts = np.array([len(adjacencies[k]) for k in sources], dtype=COUNT_DTYPE)
    neighbors = [n for k in sources for n in adjacencies[k]]
    parts.append(_COUNT.pack(len(sources)))
    parts.append(_keys_array(sources).tobytes())
    parts.append(counts.tobytes())
    parts.append(_keys_array(neighbors).tobytes())

    entries = list(nodes_info.items())
    nodes = np.zeros(len(entries), dtype=NODE_DTYPE)
    if entries:
        nodes["key"] = _keys_array([key for key, _ in entries])
        nodes["size"] = [info.size for _, info in entries]
        nodes["center"] = [tuple(info.center) for _, info in entries]
    parts.append(_COUNT.pack(len(nodes)))
    parts.append(nodes.tobytes())

    path_bytes = octree_path.encode("utf-8")
    parts.append(_COUNT.pack(len(path_bytes)))
    parts.append(path_bytes)

    return b"".join(parts)


class _Reader:
    """Cursor over an encoded record; every short read is a CorruptDataError."""

    def __init__(self, data: bytes):
        self.data = data
        self.offset = 0

    def unpack(self, fmt: struct.Struct) -> Tuple:
        try:
            values = fmt.unpack_from(self.data, self.offset)
        except struct.error as e:
            raise CorruptDataError(f"Truncated record at byte {self.offset}") from e
        self.offset += fmt.size
        return values

    def array(self, dtype: np.dtype, count: int) -> np.ndarray:
        nbytes = dtype.itemsize * count
        if self.offset + nbytes > len(self.data):
            raise CorruptDataError(
                f"Truncated record: need {nbytes} bytes at {self.offset}, have {len(self.data) - self.offset}"
            )
        if count == 0:
            return np.empty(0, dtype=dtype)
        array = np.frombuffer(self.data, dtype=dtype, count=count, offset=self.offset)
        self.offset += nbytes
        return array

    def keys(self, count: int) -> np.ndarray:
        return self.array(KEY_DTYPE, 3 * count).reshape(count, 3)

    def raw(self, count: int) -> bytes:
        if self.offset + count > len(self.data):
            raise CorruptDataError(f"Truncated record at byte {self.offset}")
        chunk = self.data[self.offset:self.offset + count]
        self.offset += count
        return chunk


def decode(data: bytes) -> DecodedRecord:
    """
    Rebuild the maps and octree path stored by ``encode``.

    Equal keys are returned as shared instances.

    Raises:
        CorruptDataError: the record is truncated, has trailing bytes, or
            does not carry the expected magic/version
    """
    reader = _Reader(bytes(data))
    magic, version, _ = reader.unpack(_HEADER)
    if magic != MAGIC:
        raise CorruptDataError(f"Not an adjacency map record (magic {magic!r})")
    if version != FORMAT_VERSION:
        raise CorruptDataError(f"Unsupported adjacency map format version {version}")

    cache = KeyCache()

    (n_keys,) = reader.unpack(_COUNT)
    sources = reader.keys(n_keys).tolist()
    counts = reader.array(COUNT_DTYPE, n_keys).tolist()
    neighbors = reader.keys(sum(counts)).tolist()

    adjacencies: Dict[OctreeKey, List[OctreeKey]] = {}
    start = 0
    for source, count in zip(sources, counts):
        key = cache.get_instance(OctreeKey(*source))
        adjacencies[key] = [cache.get_instance(OctreeKey(*n)) for n in neighbors[start:start + count]]
        start += count
    if len(adjacencies) != n_keys:
        raise CorruptDataError("Duplicate source keys in adjacency section")

    (n_nodes,) = reader.unpack(_COUNT)
    nodes = reader.array(NODE_DTYPE, n_nodes)
    entries = {}
    for key, size, center in zip(nodes["key"].tolist(), nodes["size"].tolist(), nodes["center"].tolist()):
        entries[cache.get_instance(OctreeKey(*key))] = NodeInfo(size, Point3D(*center))
    nodes_info = NodeInfoTable(entries)

    (path_length,) = reader.unpack(_COUNT)
    try:
        octree_path = reader.raw(path_length).decode("utf-8")
    except UnicodeDecodeError as e:
        raise CorruptDataError("Octree path is not valid UTF-8") from e

    if reader.offset != len(reader.data):
        raise CorruptDataError(f"{len(reader.data) - reader.offset} trailing bytes after record")

    return DecodedRecord(adjacencies, nodes_info, octree_path)
