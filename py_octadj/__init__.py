"""
Adjacency maps for sparse occupancy octrees.
"""

from .core import (
    AdjacencyMap,
    KeyCache,
    NodeInfo,
    NodeInfoTable,
    OctreeKey,
    Point3D,
    SparseOctree,
    build_adjacency_map,
    cells_touch,
)
from .storage import read_adjacency_map, write_adjacency_map

__version__ = "0.1.0"

__all__ = ['AdjacencyMap', 'KeyCache', 'NodeInfo', 'NodeInfoTable', 'OctreeKey', 'Point3D',
           'SparseOctree', 'build_adjacency_map', 'cells_touch',
           'read_adjacency_map', 'write_adjacency_map']
