"""
Command line entry point.

    py-octadj octree POINTS OUTPUT [--resolution R]
    py-octadj build OCTREE OUTPUT [--epsilon E]
    py-octadj info ADJACENCY_FILE
    py-octadj neighbors ADJACENCY_FILE X Y Z
"""

import argparse
import json
import sys

import numpy as np
import structlog

from .config import settings
from .core.adjacency_map import AdjacencyMap, build_adjacency_map
from .core.exceptions import AdjacencyMapError
from .core.octree import SparseOctree
from .utils.log_config import configure_logging

logger = structlog.get_logger()


def cmd_octree(args) -> int:
    """Create an octree from a whitespace separated ``x y z`` point file."""
    resolution = args.resolution if args.resolution is not None else settings.default_resolution
    points = np.loadtxt(args.points, ndmin=2)[:, :3]
    octree = SparseOctree.create(resolution)
    octree.update_nodes(points, occupied=True)
    if args.prune:
        octree.prune()
    octree.write(args.output)
    print(json.dumps({"octree": args.output, "points": len(points), "leaves": octree.size()}))
    return 0


def cmd_build(args) -> int:
    octree = SparseOctree.read(args.octree)
    epsilon = args.epsilon if args.epsilon is not None else settings.adjacency_epsilon
    adjacency_map = build_adjacency_map(octree, epsilon=epsilon)
    adjacency_map.write(args.output)
    print(json.dumps({
        "output": args.output,
        "nodes": len(adjacency_map.nodes_info),
        "edges": adjacency_map.edge_count,
    }))
    return 0


def cmd_info(args) -> int:
    adjacency_map = AdjacencyMap.read(args.adjacency_file)
    print(json.dumps({
        "octree": adjacency_map.octree.path,
        "resolution": adjacency_map.octree.resolution,
        "keys": len(adjacency_map.adjacencies),
        "nodes": len(adjacency_map.nodes_info),
        "edges": adjacency_map.edge_count,
    }))
    return 0


def cmd_neighbors(args) -> int:
    adjacency_map = AdjacencyMap.read(args.adjacency_file)
    node = adjacency_map.octree.search((args.x, args.y, args.z))
    if node is None:
        logger.error("No leaf at point", point=(args.x, args.y, args.z))
        return 1

    neighbors = []
    for key in adjacency_map.adjacency(node.key) or []:
        info = adjacency_map.node_info(key)
        neighbors.append({
            "key": list(key),
            "size": info.size if info else None,
            "center": list(info.center) if info else None,
        })
    print(json.dumps({"key": list(node.key), "neighbors": neighbors}))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="py-octadj", description="Octree leaf adjacency maps")
    sub = parser.add_subparsers(dest="command", required=True)

    octree = sub.add_parser("octree", help="Create an octree from an x y z point file")
    octree.add_argument("points", help="Text file with one point per line")
    octree.add_argument("output", help="Octree archive to write")
    octree.add_argument("--resolution", type=float, help="Finest cell size (default from settings)")
    octree.add_argument("--prune", action="store_true", help="Merge equal siblings before writing")
    octree.set_defaults(func=cmd_octree)

    build = sub.add_parser("build", help="Compute and store the adjacency map of an octree")
    build.add_argument("octree", help="Octree archive")
    build.add_argument("output", help="Adjacency map file to write")
    build.add_argument("--epsilon", type=float, help="Contact tolerance (default from settings)")
    build.set_defaults(func=cmd_build)

    info = sub.add_parser("info", help="Summarize a stored adjacency map")
    info.add_argument("adjacency_file")
    info.set_defaults(func=cmd_info)

    neighbors = sub.add_parser("neighbors", help="List the neighbours of the leaf at a point")
    neighbors.add_argument("adjacency_file")
    neighbors.add_argument("x", type=float)
    neighbors.add_argument("y", type=float)
    neighbors.add_argument("z", type=float)
    neighbors.set_defaults(func=cmd_neighbors)

    return parser


def main(argv=None) -> int:
    """Main function."""
    args = build_parser().parse_args(argv)
    configure_logging(settings.log_level, settings.log_format)
    try:
        return args.func(args)
    except (AdjacencyMapError, OSError, ValueError) as e:
        logger.error("Command failed", command=args.command, error=str(e))
        return 1


if __name__ == "__main__":
    sys.exit(main())
