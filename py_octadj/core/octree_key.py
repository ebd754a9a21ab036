"""Octree keys, metric points and the canonical key cache."""

from typing import Dict, NamedTuple


class OctreeKey(NamedTuple):
    """Discrete address of an octree cell (one unsigned 16-bit value per axis)."""
    x: int
    y: int
    z: int


class Point3D(NamedTuple):
    """Metric coordinate in the octree frame."""
    x: float
    y: float
    z: float

    def offset(self, delta: float) -> "Point3D":
        """Return this point shifted by ``delta`` on every axis."""
        return Point3D(self.x + delta, self.y + delta, self.z + delta)


class KeyCache:
    """
    Cache of ``OctreeKey`` instances.

    The builder sees the same key from the outer traversal and from every
    neighbour query that reaches it. Routing all of them through the cache
    means the finished maps share one object per distinct key instead of
    holding many equal copies.
    """

    def __init__(self):
        self._cache: Dict[OctreeKey, OctreeKey] = {}

    def get_instance(self, key: OctreeKey) -> OctreeKey:
        """
        Return the stored instance equal to ``key``.

        Args:
            key: Query key

        Returns:
            The first instance seen with the same value; ``key`` itself
            when no equal key was cached yet
        """
        return self._cache.setdefault(key, key)

    def __len__(self) -> int:
        return len(self._cache)

    def __contains__(self, key) -> bool:
        return key in self._cache
