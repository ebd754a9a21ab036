"""
Core octree and adjacency functionality.
"""

from .octree_key import OctreeKey, Point3D, KeyCache
from .node_info import NodeInfo, NodeInfoTable
from .octree import SparseOctree, OctreeSource, LeafCell, OctreeNode
from .adjacency_map import AdjacencyMap, build_adjacency_map, cells_touch, EPSILON
from .exceptions import (
    AdjacencyMapError, AdjacencyMapIOError, AdjacencyMapNotFoundError,
    CorruptDataError, OctreeLoadError, BuildCancelledError,
)

__all__ = ['OctreeKey', 'Point3D', 'KeyCache', 'NodeInfo', 'NodeInfoTable',
           'SparseOctree', 'OctreeSource', 'LeafCell', 'OctreeNode',
           'AdjacencyMap', 'build_adjacency_map', 'cells_touch', 'EPSILON',
           'AdjacencyMapError', 'AdjacencyMapIOError', 'AdjacencyMapNotFoundError',
           'CorruptDataError', 'OctreeLoadError', 'BuildCancelledError']
