"""Shared octree stand-ins for the test suite."""

from typing import Iterable, List, Optional, Tuple

from py_octadj.core.octree import LeafCell
from py_octadj.core.octree_key import OctreeKey, Point3D


class ListOctree:
    """Octree stand-in holding an explicit list of leaves."""

    def __init__(self, resolution: float, cells: Iterable[Tuple[tuple, tuple, float]],
                 path: Optional[str] = None):
        self.resolution = resolution
        self.path = path
        self.cells: List[LeafCell] = [
            LeafCell(OctreeKey(*key), Point3D(*center), float(size)) for key, center, size in cells
        ]
        self.queries = 0

    def metric_min(self) -> Point3D:
        if not self.cells:
            return Point3D(0.0, 0.0, 0.0)
        return Point3D(*(min(c.center[a] - c.size / 2 for c in self.cells) for a in range(3)))

    def metric_max(self) -> Point3D:
        if not self.cells:
            return Point3D(0.0, 0.0, 0.0)
        return Point3D(*(max(c.center[a] + c.size / 2 for c in self.cells) for a in range(3)))

    def leaf_bbx_iterator(self, bbx_min, bbx_max, max_depth=0):
        self.queries += 1
        for cell in self.cells:
            half = cell.size / 2
            if all(c - half <= hi and c + half >= lo
                   for c, lo, hi in zip(cell.center, bbx_min, bbx_max)):
                yield cell
