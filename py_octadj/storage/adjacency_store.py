"""
Reading and writing adjacency maps on disk.

The backing octree is not embedded in the file, only its path. Reading a map
loads the octree again from that path; the map is not checked against the
octree, so an octree file edited after the map was written goes unnoticed.
"""

from pathlib import Path
from typing import Callable, Dict, List, Optional

import structlog

from ..core.adjacency_map import AdjacencyMap
from ..core.exceptions import (
    AdjacencyMapIOError,
    AdjacencyMapNotFoundError,
    CorruptDataError,
    OctreeLoadError,
)
from ..core.node_info import NodeInfoTable
from ..core.octree import OctreeSource, SparseOctree
from ..core.octree_key import OctreeKey
from . import codec

_logger = structlog.get_logger()

OctreeLoader = Callable[[str], OctreeSource]


def save(adjacencies: Dict[OctreeKey, List[OctreeKey]], nodes_info: NodeInfoTable,
         octree_path: str, destination, logger=None) -> None:
    """
    Write adjacency lists, node info and octree path to ``destination``.

    An existing file is replaced (a warning is logged first).

    Args:
        adjacencies: Neighbour lists per key
        nodes_info: Size and center per key
        octree_path: Path the octree can be reloaded from
        destination: Output file
        logger: Logger to report to, defaults to this module's logger

    Raises:
        AdjacencyMapIOError: the file could not be written
    """
    log = logger or _logger
    destination = Path(destination)
    record = codec.encode(adjacencies, nodes_info, octree_path)

    if destination.exists():
        log.warning("Adjacency map file already exists, content will be replaced",
                    path=str(destination))
    try:
        destination.write_bytes(record)
    except OSError as e:
        log.error("I/O error when writing adjacency map", path=str(destination), error=str(e))
        raise AdjacencyMapIOError(f"Could not write adjacency map to {destination}") from e

    log.info("Adjacency map written", path=str(destination), bytes=len(record),
             keys=len(adjacencies), nodes=len(nodes_info))


def read_record(source, logger=None) -> codec.DecodedRecord:
    """
    Read and decode the record stored in ``source`` without touching the octree.

    Raises:
        AdjacencyMapNotFoundError: ``source`` does not exist
        AdjacencyMapIOError: ``source`` could not be read
        CorruptDataError: the content is not a valid record
    """
    log = logger or _logger
    source = Path(source)
    if not source.exists():
        log.error("Could not open adjacency map, file does not exist", path=str(source))
        raise AdjacencyMapNotFoundError(f"Specified file {source} does not exist")

    try:
        data = source.read_bytes()
    except OSError as e:
        log.error("I/O error when reading adjacency map", path=str(source), error=str(e))
        raise AdjacencyMapIOError(f"Could not read adjacency map from {source}") from e

    try:
        return codec.decode(data)
    except CorruptDataError as e:
        log.error("Cannot decode adjacency map", path=str(source), error=str(e))
        raise


def write_adjacency_map(adjacency_map: AdjacencyMap, filename, logger=None) -> None:
    """
    Save ``adjacency_map`` together with the path of its octree.

    Raises:
        ValueError: the octree has never been written to or read from disk
        AdjacencyMapIOError: the file could not be written
    """
    octree = adjacency_map.octree
    if octree is None or not getattr(octree, "path", None):
        raise ValueError("The octree must be stored on disk before saving its adjacency map")
    save(adjacency_map.adjacencies, adjacency_map.nodes_info, str(octree.path), filename, logger=logger)


def read_adjacency_map(filename, octree_loader: Optional[OctreeLoader] = None,
                       logger=None) -> AdjacencyMap:
    """
    Load an adjacency map and reload the octree it was built from.

    Args:
        filename: File written by ``write_adjacency_map``
        octree_loader: Callable loading an octree from a path,
            defaults to ``SparseOctree.read``
        logger: Logger to report to, defaults to this module's logger

    Raises:
        AdjacencyMapNotFoundError, AdjacencyMapIOError, CorruptDataError:
            see ``read_record``
        OctreeLoadError: the octree could not be loaded from the stored path
    """
    log = logger or _logger
    loader = octree_loader or SparseOctree.read
    record = read_record(filename, logger=log)

    try:
        octree = loader(record.octree_path)
    except OctreeLoadError:
        log.error("Could not load octree of adjacency map", path=str(filename),
                  octree_path=record.octree_path)
        raise
    except Exception as e:
        log.error("Could not load octree of adjacency map", path=str(filename),
                  octree_path=record.octree_path, error=str(e))
        raise OctreeLoadError(f"Could not load octree from {record.octree_path}") from e

    log.info("Adjacency map read", path=str(filename), keys=len(record.adjacencies),
             nodes=len(record.nodes_info), octree_path=record.octree_path)
    return AdjacencyMap(record.adjacencies, record.nodes_info, octree)
