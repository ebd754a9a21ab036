"""
Adjacency map over the leaves of an octree.

Octrees only answer "which leaves lie in this box", not "which leaves touch
this one", so the adjacency between leaves is computed once here and kept
alongside the size and center of every leaf. The map has to be rebuilt
whenever the geometry of the octree changes (cells added, or cell sizes
changing after pruning).

Two leaves are adjacent when their axis-aligned bounding boxes touch or
overlap on all three axes, which covers face, edge and corner contact between
cells of different depths.
"""

import threading
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import structlog

from .exceptions import BuildCancelledError
from .node_info import NodeInfo, NodeInfoTable
from .octree import OctreeSource
from .octree_key import KeyCache, OctreeKey, Point3D

logger = structlog.get_logger()

# Absorbs float error in cell centers and sizes
EPSILON = 1e-3


def cells_touch(center1: Point3D, size1: float, center2: Point3D, size2: float,
                epsilon: float = EPSILON) -> bool:
    """
    AABB contact test between two cubic cells.

    Args:
        center1: Center of the first cell
        size1: Edge length of the first cell
        center2: Center of the second cell
        size2: Edge length of the second cell
        epsilon: Slack allowed beyond exact contact

    Returns:
        True if on every axis the distance between centers exceeds the sum of
        half sizes by at most ``epsilon``
    """
    combined = size1 / 2.0 + size2 / 2.0
    return all(abs(a - b) - combined <= epsilon for a, b in zip(center1, center2))


@dataclass
class AdjacencyMap:
    """Adjacency lists and leaf geometry computed from one octree."""
    adjacencies: Dict[OctreeKey, List[OctreeKey]] = field(default_factory=dict)
    nodes_info: NodeInfoTable = field(default_factory=NodeInfoTable)
    octree: Optional[OctreeSource] = None

    def adjacency(self, key: OctreeKey) -> Optional[List[OctreeKey]]:
        """Neighbours of ``key``, or None when none were found."""
        return self.adjacencies.get(key)

    def node_info(self, key: OctreeKey) -> Optional[NodeInfo]:
        """Size and center stored for ``key`` while building."""
        return self.nodes_info.lookup(key)

    @property
    def edge_count(self) -> int:
        return sum(len(neighbors) for neighbors in self.adjacencies.values())

    def write(self, filename: str, logger=None) -> bool:
        """Save this map; see ``py_octadj.storage.write_adjacency_map``."""
        from ..storage.adjacency_store import write_adjacency_map

        write_adjacency_map(self, filename, logger=logger)
        return True

    @classmethod
    def read(cls, filename: str, octree_loader=None, logger=None) -> "AdjacencyMap":
        """Load a map saved with ``write``, reloading its octree from disk."""
        from ..storage.adjacency_store import read_adjacency_map

        return read_adjacency_map(filename, octree_loader=octree_loader, logger=logger)


def build_adjacency_map(octree: OctreeSource, epsilon: Optional[float] = None,
                        cancel_event: Optional[threading.Event] = None) -> AdjacencyMap:
    """
    Compute the adjacency of every leaf of ``octree``.

    Each leaf of the octree is visited once. Its neighbours are looked up
    with a second box query around its center, padded by the octree
    resolution, and kept when ``cells_touch`` holds. The padding is the
    resolution of the tree and not the size of the visited leaf, so a leaf
    much coarser than its small neighbour may miss it when the coarse
    neighbour's center is far outside that window.

    Args:
        octree: Source of leaves (``SparseOctree`` or compatible)
        epsilon: Contact tolerance, defaults to ``EPSILON``
        cancel_event: Checked between leaves; when set the build stops

    Returns:
        AdjacencyMap bound to ``octree``

    Raises:
        BuildCancelledError: ``cancel_event`` was set during the build
    """
    epsilon = EPSILON if epsilon is None else epsilon
    resolution = octree.resolution
    metric_min = Point3D(*octree.metric_min())
    metric_max = Point3D(*octree.metric_max())

    logger.info("Building adjacency map", resolution=resolution,
                metric_min=tuple(metric_min), metric_max=tuple(metric_max))

    adjacencies: Dict[OctreeKey, List[OctreeKey]] = {}
    nodes_info = NodeInfoTable()
    cache = KeyCache()

    visited = 0
    for key1, center1, size1 in octree.leaf_bbx_iterator(metric_min, metric_max, 0):
        if cancel_event is not None and cancel_event.is_set():
            logger.warning("Adjacency build cancelled", visited=visited)
            raise BuildCancelledError(f"Build cancelled after {visited} leaves")

        center1 = Point3D(*center1)
        key1 = cache.get_instance(key1)
        nodes_info.record(key1, size1, center1)
        visited += 1

        window = octree.leaf_bbx_iterator(center1.offset(-resolution), center1.offset(resolution), 0)
        for key2, center2, size2 in window:
            key2 = cache.get_instance(key2)
            if key1 == key2:
                continue
            if cells_touch(center1, size1, center2, size2, epsilon):
                adjacencies.setdefault(key1, []).append(key2)

    result = AdjacencyMap(adjacencies, nodes_info, octree)
    logger.info("Adjacency map built", leaves=visited, keys=len(cache),
                connected=len(adjacencies), edges=result.edge_count)
    return result
