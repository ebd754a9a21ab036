"""
Sparse occupancy octree.

Cells are addressed with Octomap's key scheme: a tree of depth 16 whose
finest cells have edge length ``resolution``, keys offset by 32768 so the
origin sits in the middle of the key space. Only leaves are stored; each leaf
keeps its depth and an occupancy log-odds value. This is the geometric data
source the adjacency builder walks through ``leaf_bbx_iterator``.
"""

import math
import zipfile
from collections import Counter, defaultdict
from typing import Dict, Iterable, Iterator, List, NamedTuple, Optional, Protocol, Tuple

import numpy as np
import structlog

from .exceptions import OctreeLoadError
from .octree_key import OctreeKey, Point3D

logger = structlog.get_logger()

TREE_DEPTH = 16
TREE_MAX_VAL = 32768
KEY_MAX = 2 * TREE_MAX_VAL - 1

ARCHIVE_VERSION = 1


def _logodds(probability: float) -> float:
    return math.log(probability / (1.0 - probability))


# Octomap sensor model defaults
PROB_HIT_LOG = _logodds(0.7)
PROB_MISS_LOG = _logodds(0.4)
CLAMPING_MIN_LOG = _logodds(0.1192)
CLAMPING_MAX_LOG = _logodds(0.971)
OCCUPANCY_THRES_LOG = _logodds(0.5)


class LeafCell(NamedTuple):
    """Leaf reported by a bounding box query."""
    key: OctreeKey
    center: Point3D
    size: float


class OctreeNode(NamedTuple):
    """Stored leaf with its depth and occupancy."""
    key: OctreeKey
    depth: int
    log_odds: float

    @property
    def occupancy(self) -> float:
        return 1.0 - 1.0 / (1.0 + math.exp(self.log_odds))


class OctreeSource(Protocol):
    """What the adjacency builder and the persistence layer need from an octree."""

    resolution: float
    path: Optional[str]

    def metric_min(self) -> Point3D: ...

    def metric_max(self) -> Point3D: ...

    def leaf_bbx_iterator(self, bbx_min: Point3D, bbx_max: Point3D,
                          max_depth: int = 0) -> Iterator[LeafCell]: ...


def _depth_or_finest(depth: int) -> int:
    if depth < 0 or depth > TREE_DEPTH:
        raise ValueError(f"depth must be in [0, {TREE_DEPTH}], got {depth}")
    return depth or TREE_DEPTH


def adjust_key_at_depth(key: OctreeKey, depth: int) -> OctreeKey:
    """
    Return the key of the cell at ``depth`` that contains ``key``.

    Depth 0 (and ``TREE_DEPTH``) leave the key untouched.
    """
    diff = TREE_DEPTH - _depth_or_finest(depth)
    if diff == 0:
        return key
    half = 1 << (diff - 1)
    return OctreeKey(*(((k >> diff) << diff) + half for k in key))


def key_range(key: OctreeKey, depth: int) -> Tuple[Tuple[int, ...], Tuple[int, ...]]:
    """Inclusive range of finest keys covered by the cell ``key`` at ``depth``."""
    diff = TREE_DEPTH - _depth_or_finest(depth)
    low = tuple((k >> diff) << diff for k in key)
    high = tuple(k + (1 << diff) - 1 for k in low)
    return low, high


def child_keys(key: OctreeKey, depth: int) -> List[OctreeKey]:
    """Keys of the eight children of the cell ``key`` at ``depth``."""
    depth = _depth_or_finest(depth)
    if depth == TREE_DEPTH:
        raise ValueError("Cells at the finest depth have no children")
    child_diff = TREE_DEPTH - depth - 1
    step = 1 << child_diff
    half = (1 << (child_diff - 1)) if child_diff else 0
    low, _ = key_range(key, depth)
    return [
        OctreeKey(low[0] + i * step + half, low[1] + j * step + half, low[2] + k * step + half)
        for i in (0, 1) for j in (0, 1) for k in (0, 1)
    ]


class SparseOctree:
    """Leaf-only octree with Octomap-compatible keys."""

    def __init__(self, resolution: float, path: Optional[str] = None):
        if resolution <= 0:
            raise ValueError(f"resolution must be positive, got {resolution}")
        self.resolution = float(resolution)
        self.path = path
        self._leaves: Dict[OctreeKey, Tuple[int, float]] = {}
        self._depth_counts: Counter = Counter()

    @classmethod
    def create(cls, resolution: float) -> "SparseOctree":
        """Create an empty octree whose finest cells have edge ``resolution``."""
        return cls(resolution)

    # ------------------------------------------------------------------
    # Key / coordinate conversion
    # ------------------------------------------------------------------

    def node_size(self, depth: int) -> float:
        return self.resolution * (1 << (TREE_DEPTH - _depth_or_finest(depth)))

    def coord_to_key(self, point: Iterable[float], depth: int = 0) -> OctreeKey:
        """Key of the cell containing ``point`` (clamped to the key space)."""
        discrete = []
        for coord in point:
            k = math.floor(coord / self.resolution) + TREE_MAX_VAL
            discrete.append(min(max(k, 0), KEY_MAX))
        return adjust_key_at_depth(OctreeKey(*discrete), depth)

    def key_to_coord(self, key: OctreeKey, depth: int = 0) -> Point3D:
        """Metric center of the cell ``key`` at ``depth``."""
        depth = _depth_or_finest(depth)
        diff = TREE_DEPTH - depth
        if diff == 0:
            return Point3D(*((k - TREE_MAX_VAL + 0.5) * self.resolution for k in key))
        size = self.node_size(depth)
        return Point3D(*((math.floor((k - TREE_MAX_VAL) / (1 << diff)) + 0.5) * size for k in key))

    # ------------------------------------------------------------------
    # Leaf bookkeeping
    # ------------------------------------------------------------------

    def _put_leaf(self, key: OctreeKey, depth: int, log_odds: float) -> None:
        previous = self._leaves.get(key)
        if previous is not None:
            self._depth_counts[previous[0]] -= 1
        self._leaves[key] = (depth, log_odds)
        self._depth_counts[depth] += 1

    def _drop_leaf(self, key: OctreeKey) -> None:
        depth, _ = self._leaves.pop(key)
        self._depth_counts[depth] -= 1

    def _depths_present(self) -> List[int]:
        return sorted(d for d, n in self._depth_counts.items() if n > 0)

    def _find_leaf(self, key: OctreeKey) -> Optional[OctreeNode]:
        """Leaf containing the finest-depth ``key``, if any."""
        for depth in self._depths_present():
            adjusted = adjust_key_at_depth(key, depth)
            entry = self._leaves.get(adjusted)
            if entry is not None and entry[0] == depth:
                return OctreeNode(adjusted, depth, entry[1])
        return None

    def _split(self, node: OctreeNode) -> None:
        self._drop_leaf(node.key)
        for child in child_keys(node.key, node.depth):
            self._put_leaf(child, node.depth + 1, node.log_odds)

    def _split_down_to(self, key: OctreeKey, depth: int) -> Optional[OctreeNode]:
        """Split the leaf enclosing ``key`` until it is no coarser than ``depth``."""
        node = self._find_leaf(key)
        while node is not None and node.depth < depth:
            self._split(node)
            node = self._find_leaf(key)
        return node

    def _leaves_intersecting(self, kmin: OctreeKey, kmax: OctreeKey) -> Iterator[OctreeNode]:
        depths = self._depths_present()
        lookups = 0
        for depth in depths:
            diff = TREE_DEPTH - depth
            lookups += math.prod((hi >> diff) - (lo >> diff) + 1 for lo, hi in zip(kmin, kmax))

        if lookups <= len(self._leaves):
            # Small box: look up every candidate cell directly
            for depth in depths:
                diff = TREE_DEPTH - depth
                half = (1 << (diff - 1)) if diff else 0
                ranges = [range(lo >> diff, (hi >> diff) + 1) for lo, hi in zip(kmin, kmax)]
                for bx in ranges[0]:
                    for by in ranges[1]:
                        for bz in ranges[2]:
                            key = OctreeKey((bx << diff) + half, (by << diff) + half, (bz << diff) + half)
                            entry = self._leaves.get(key)
                            if entry is not None and entry[0] == depth:
                                yield OctreeNode(key, depth, entry[1])
            return

        for key, (depth, log_odds) in self._leaves.items():
            low, high = key_range(key, depth)
            if all(l <= qhi and h >= qlo for l, h, qlo, qhi in zip(low, high, kmin, kmax)):
                yield OctreeNode(key, depth, log_odds)

    # ------------------------------------------------------------------
    # Occupancy updates
    # ------------------------------------------------------------------

    def update_node(self, point: Iterable[float], occupied: bool) -> OctreeNode:
        """
        Integrate one hit or miss at the finest cell containing ``point``.

        A coarser leaf covering the point is split first so that only the
        touched cell changes.
        """
        key = self.coord_to_key(point)
        node = self._split_down_to(key, TREE_DEPTH)
        log_odds = node.log_odds if node is not None else 0.0
        log_odds += PROB_HIT_LOG if occupied else PROB_MISS_LOG
        log_odds = min(max(log_odds, CLAMPING_MIN_LOG), CLAMPING_MAX_LOG)
        self._put_leaf(key, TREE_DEPTH, log_odds)
        return OctreeNode(key, TREE_DEPTH, log_odds)

    def update_nodes(self, points: np.ndarray, occupied: bool) -> int:
        """Apply ``update_node`` to every row of an (N, 3) array."""
        points = np.asarray(points, dtype=np.float64).reshape(-1, 3)
        for point in points:
            self.update_node(point, occupied)
        return len(points)

    def set_node(self, point: Iterable[float], depth: int, occupied: bool) -> OctreeNode:
        """
        Store a leaf of the given depth around ``point``.

        Finer leaves inside the new cell are removed; an enclosing coarser
        leaf is split so its remaining volume keeps its occupancy.
        """
        depth = _depth_or_finest(depth)
        finest = self.coord_to_key(point)
        key = adjust_key_at_depth(finest, depth)
        self._split_down_to(finest, depth)

        low, high = key_range(key, depth)
        for node in list(self._leaves_intersecting(OctreeKey(*low), OctreeKey(*high))):
            self._drop_leaf(node.key)

        log_odds = CLAMPING_MAX_LOG if occupied else CLAMPING_MIN_LOG
        self._put_leaf(key, depth, log_odds)
        return OctreeNode(key, depth, log_odds)

    def search(self, point: Iterable[float]) -> Optional[OctreeNode]:
        """Leaf containing ``point``, or None for unknown space."""
        return self._find_leaf(self.coord_to_key(point))

    def is_node_occupied(self, node: OctreeNode) -> bool:
        return node.log_odds > OCCUPANCY_THRES_LOG

    def prune(self) -> int:
        """
        Merge groups of eight sibling leaves with equal occupancy into their parent.

        Returns:
            Number of merges performed
        """
        merged = 0
        changed = True
        while changed:
            changed = False
            siblings = defaultdict(list)
            for key, (depth, log_odds) in self._leaves.items():
                if depth > 1:
                    siblings[(adjust_key_at_depth(key, depth - 1), depth - 1)].append((key, log_odds))
            for (parent, parent_depth), children in siblings.items():
                if len(children) != 8:
                    continue
                if any(lo != children[0][1] for _, lo in children):
                    continue
                for child, _ in children:
                    self._drop_leaf(child)
                self._put_leaf(parent, parent_depth, children[0][1])
                merged += 1
                changed = True
        if merged:
            logger.debug("Pruned octree", merged=merged, leaves=len(self._leaves))
        return merged

    # ------------------------------------------------------------------
    # Structure queries
    # ------------------------------------------------------------------

    def size(self) -> int:
        """Number of stored leaves."""
        return len(self._leaves)

    def __len__(self) -> int:
        return len(self._leaves)

    def nodes(self) -> List[OctreeNode]:
        return [OctreeNode(key, depth, lo) for key, (depth, lo) in self._leaves.items()]

    def _bounds(self) -> Tuple[np.ndarray, np.ndarray]:
        if not self._leaves:
            origin = np.zeros(3)
            return origin, origin
        centers = np.array([self.key_to_coord(k, d) for k, (d, _) in self._leaves.items()])
        half = np.array([self.node_size(d) / 2.0 for d, _ in self._leaves.values()])[:, None]
        return (centers - half).min(axis=0), (centers + half).max(axis=0)

    def metric_min(self) -> Point3D:
        return Point3D(*(float(v) for v in self._bounds()[0]))

    def metric_max(self) -> Point3D:
        return Point3D(*(float(v) for v in self._bounds()[1]))

    def leaf_bbx_iterator(self, bbx_min: Iterable[float], bbx_max: Iterable[float],
                          max_depth: int = 0) -> Iterator[LeafCell]:
        """
        Iterate over the leaves intersecting the box ``[bbx_min, bbx_max]``.

        The box is converted to an inclusive range of finest keys; every leaf
        whose key range overlaps it is reported. Leaves deeper than
        ``max_depth`` are reported once, as their ancestor at ``max_depth``.

        Args:
            bbx_min: Minimum corner of the query box
            bbx_max: Maximum corner of the query box
            max_depth: Deepest level to report; 0 means no limit

        Yields:
            LeafCell(key, center, size) for each matching leaf
        """
        max_depth = _depth_or_finest(max_depth)
        kmin = self.coord_to_key(bbx_min)
        kmax = self.coord_to_key(bbx_max)
        if any(lo > hi for lo, hi in zip(kmin, kmax)):
            return

        reported = set()
        for node in self._leaves_intersecting(kmin, kmax):
            key, depth = node.key, node.depth
            if depth > max_depth:
                key, depth = adjust_key_at_depth(key, max_depth), max_depth
                if key in reported:
                    continue
                reported.add(key)
            yield LeafCell(key, self.key_to_coord(key, depth), self.node_size(depth))

    # ------------------------------------------------------------------
    # I/O
    # ------------------------------------------------------------------

    def write(self, filename: str) -> bool:
        """
        Store the octree as a numpy ``.npz`` archive and remember the path.

        Args:
            filename: Output path (used verbatim, no suffix is appended)

        Returns:
            True once the archive has been written
        """
        keys = np.array(list(self._leaves.keys()), dtype=np.uint16).reshape(-1, 3)
        depths = np.array([d for d, _ in self._leaves.values()], dtype=np.uint8)
        log_odds = np.array([lo for _, lo in self._leaves.values()], dtype=np.float64)

        with open(filename, "wb") as f:
            np.savez_compressed(
                f,
                version=np.uint16(ARCHIVE_VERSION),
                resolution=np.float64(self.resolution),
                keys=keys,
                depths=depths,
                log_odds=log_odds,
            )
        self.path = str(filename)
        logger.info("Octree written", path=self.path, leaves=len(keys))
        return True

    @classmethod
    def read(cls, filename: str) -> "SparseOctree":
        """
        Load an octree written by ``write``.

        Raises:
            OctreeLoadError: the file is missing, unreadable or not an octree archive
        """
        try:
            archive = np.load(filename, allow_pickle=False)
        except (OSError, ValueError, EOFError, zipfile.BadZipFile) as e:
            logger.error("Could not open octree", path=str(filename), error=str(e))
            raise OctreeLoadError(f"Could not load octree from {filename}") from e

        if not hasattr(archive, "files"):
            logger.error("Not an octree archive", path=str(filename))
            raise OctreeLoadError(f"{filename} is not an octree archive")

        with archive:
            try:
                version = int(archive["version"])
                resolution = float(archive["resolution"])
                keys = archive["keys"].reshape(-1, 3)
                depths = archive["depths"]
                log_odds = archive["log_odds"]
                if depths.ndim != 1 or log_odds.ndim != 1:
                    raise ValueError("leaf arrays must be one dimensional")
            except (KeyError, ValueError, TypeError, zipfile.BadZipFile) as e:
                logger.error("Malformed octree archive", path=str(filename), error=str(e))
                raise OctreeLoadError(f"Malformed octree archive {filename}") from e

        if version != ARCHIVE_VERSION:
            raise OctreeLoadError(f"Unsupported octree archive version {version}")
        if not (len(keys) == len(depths) == len(log_odds)):
            raise OctreeLoadError(f"Inconsistent leaf arrays in {filename}")
        if len(depths) and (depths.min() < 1 or depths.max() > TREE_DEPTH):
            raise OctreeLoadError(f"Leaf depth out of range in {filename}")
        if resolution <= 0:
            raise OctreeLoadError(f"Invalid resolution {resolution} in {filename}")

        octree = cls(resolution, path=str(filename))
        for key, depth, lo in zip(keys.tolist(), depths.tolist(), log_odds.tolist()):
            octree._put_leaf(OctreeKey(*key), depth, lo)

        logger.info("Octree loaded", path=octree.path, leaves=len(octree), resolution=resolution)
        return octree
