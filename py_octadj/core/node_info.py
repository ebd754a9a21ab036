"""Size and center of the leaves visited by the adjacency builder."""

from typing import Dict, ItemsView, Iterator, NamedTuple, Optional

from .octree_key import OctreeKey, Point3D


class NodeInfo(NamedTuple):
    """Edge length and metric center of a leaf cell."""
    size: float
    center: Point3D


class NodeInfoTable:
    """
    Per-key leaf geometry discovered during one build pass.

    Only leaves visited by the outer loop of the builder are recorded, so a
    key that was only ever reached as a neighbour may have no entry.
    """

    def __init__(self, entries: Optional[Dict[OctreeKey, NodeInfo]] = None):
        self._entries: Dict[OctreeKey, NodeInfo] = dict(entries or {})

    def record(self, key: OctreeKey, size: float, center: Point3D) -> None:
        """Store (or overwrite) the size and center of ``key``."""
        self._entries[key] = NodeInfo(float(size), Point3D(*center))

    def lookup(self, key: OctreeKey) -> Optional[NodeInfo]:
        return self._entries.get(key)

    def items(self) -> ItemsView[OctreeKey, NodeInfo]:
        return self._entries.items()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key) -> bool:
        return key in self._entries

    def __iter__(self) -> Iterator[OctreeKey]:
        return iter(self._entries)

    def __eq__(self, other) -> bool:
        if not isinstance(other, NodeInfoTable):
            return NotImplemented
        return self._entries == other._entries

    def __repr__(self) -> str:
        return f"NodeInfoTable({len(self._entries)} nodes)"
