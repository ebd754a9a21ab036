"""Error types raised while building, storing and loading adjacency maps."""


class AdjacencyMapError(Exception):
    """Base class for every adjacency map failure."""


class AdjacencyMapIOError(AdjacencyMapError, OSError):
    """Reading or writing an adjacency map file failed."""


class AdjacencyMapNotFoundError(AdjacencyMapError, FileNotFoundError):
    """The adjacency map file to read does not exist."""


class CorruptDataError(AdjacencyMapError, ValueError):
    """A stored record could not be decoded into the expected types."""


class OctreeLoadError(AdjacencyMapError):
    """The backing octree could not be loaded from its path."""


class BuildCancelledError(AdjacencyMapError):
    """A build was stopped through its cancel event."""
