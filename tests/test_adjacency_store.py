"""Tests for adjacency map persistence."""

from unittest.mock import MagicMock

import pytest

from helpers import ListOctree
from py_octadj.core.adjacency_map import AdjacencyMap, build_adjacency_map
from py_octadj.core.exceptions import (
    AdjacencyMapIOError,
    AdjacencyMapNotFoundError,
    CorruptDataError,
    OctreeLoadError,
)
from py_octadj.core.octree import TREE_DEPTH, SparseOctree
from py_octadj.storage import read_adjacency_map, read_record, save, write_adjacency_map


@pytest.fixture
def stored_octree(tmp_path):
    octree = SparseOctree.create(0.5)
    for x in range(3):
        for y in range(2):
            octree.update_node((x * 0.5 + 0.25, y * 0.5 + 0.25, 0.25), True)
    octree.set_node((2.0, 0.1, 0.1), TREE_DEPTH - 1, occupied=False)
    octree.write(str(tmp_path / "octree.ot"))
    return octree


class TestRoundTrip:
    """Write followed by read."""

    def test_round_trip(self, stored_octree, tmp_path):
        """Test that a written map reads back with the same content."""
        original = build_adjacency_map(stored_octree)
        path = tmp_path / "octree.adj"

        assert original.write(str(path))
        restored = AdjacencyMap.read(str(path))

        assert set(restored.adjacencies) == set(original.adjacencies)
        for key, neighbors in original.adjacencies.items():
            assert sorted(restored.adjacency(key)) == sorted(neighbors)
        assert restored.nodes_info == original.nodes_info
        for key, info in original.nodes_info.items():
            restored_info = restored.node_info(key)
            assert restored_info.size == pytest.approx(info.size)
            assert restored_info.center == pytest.approx(info.center)

    def test_octree_reloaded_from_path(self, stored_octree, tmp_path):
        """Test that reading reloads the octree from its stored path."""
        path = tmp_path / "octree.adj"
        write_adjacency_map(build_adjacency_map(stored_octree), path)

        restored = read_adjacency_map(path)

        assert isinstance(restored.octree, SparseOctree)
        assert restored.octree is not stored_octree
        assert restored.octree.path == stored_octree.path
        assert sorted(restored.octree.nodes()) == sorted(stored_octree.nodes())

    def test_custom_octree_loader(self, tmp_path):
        """Test that a custom loader receives the stored path."""
        octree = ListOctree(1.0, [((0, 0, 0), (0, 0, 0), 1.0), ((1, 0, 0), (1, 0, 0), 1.0)],
                            path="/virtual/octree")
        path = tmp_path / "list.adj"
        write_adjacency_map(build_adjacency_map(octree), path)
        loader = MagicMock(return_value=octree)

        restored = read_adjacency_map(path, octree_loader=loader)

        loader.assert_called_once_with("/virtual/octree")
        assert restored.octree is octree
        assert restored.edge_count == 2

    def test_save_then_read_record(self, stored_octree, tmp_path):
        """Test the record helpers without an octree."""
        adjacency_map = build_adjacency_map(stored_octree)
        path = tmp_path / "raw.adj"

        save(adjacency_map.adjacencies, adjacency_map.nodes_info, "/some/octree.ot", path)
        record = read_record(path)

        assert record.octree_path == "/some/octree.ot"
        assert record.adjacencies == adjacency_map.adjacencies


class TestWriteErrors:
    """Failures and warnings while writing."""

    def test_overwrite_logs_warning(self, stored_octree, tmp_path):
        """Test that replacing a file logs a warning."""
        path = tmp_path / "octree.adj"
        path.write_bytes(b"old content")
        logger = MagicMock()

        write_adjacency_map(build_adjacency_map(stored_octree), path, logger=logger)

        logger.warning.assert_called_once()
        assert "replaced" in logger.warning.call_args[0][0]
        assert read_adjacency_map(path).octree.path == stored_octree.path

    def test_new_file_has_no_warning(self, stored_octree, tmp_path):
        """Test that writing a new file logs no warning."""
        logger = MagicMock()

        write_adjacency_map(build_adjacency_map(stored_octree), tmp_path / "new.adj", logger=logger)

        logger.warning.assert_not_called()
        logger.info.assert_called()

    def test_write_failure(self, stored_octree, tmp_path):
        """Test that a failed write raises an IO error."""
        target = tmp_path / "a_directory"
        target.mkdir()
        logger = MagicMock()

        with pytest.raises(AdjacencyMapIOError):
            write_adjacency_map(build_adjacency_map(stored_octree), target, logger=logger)
        logger.error.assert_called_once()

    def test_octree_without_path(self, tmp_path):
        """Test that an octree never stored on disk cannot be referenced."""
        octree = SparseOctree.create(1.0)
        octree.update_node((0.5, 0.5, 0.5), True)

        with pytest.raises(ValueError):
            write_adjacency_map(build_adjacency_map(octree), tmp_path / "x.adj")


class TestReadErrors:
    """Failures while reading."""

    def test_missing_file(self, tmp_path):
        """Test that a missing file raises a not found error."""
        logger = MagicMock()

        with pytest.raises(AdjacencyMapNotFoundError) as excinfo:
            read_adjacency_map(tmp_path / "missing.adj", logger=logger)

        assert isinstance(excinfo.value, FileNotFoundError)
        logger.error.assert_called_once()

    def test_unreadable_file(self, tmp_path):
        """Test that an unreadable path raises an IO error."""
        target = tmp_path / "a_directory"
        target.mkdir()

        with pytest.raises(AdjacencyMapIOError):
            read_adjacency_map(target)

    def test_corrupt_file(self, tmp_path):
        """Test that a damaged record raises a corrupt data error."""
        path = tmp_path / "corrupt.adj"
        path.write_bytes(b"OADJ\x01\x00\x00\x00\xff")
        logger = MagicMock()

        with pytest.raises(CorruptDataError):
            read_adjacency_map(path, logger=logger)
        logger.error.assert_called_once()

    def test_octree_missing(self, stored_octree, tmp_path):
        """Test that a deleted octree raises a load error."""
        path = tmp_path / "octree.adj"
        write_adjacency_map(build_adjacency_map(stored_octree), path)
        (tmp_path / "octree.ot").unlink()

        with pytest.raises(OctreeLoadError):
            read_adjacency_map(path)

    def test_loader_os_error_wrapped(self, stored_octree, tmp_path):
        """Test that loader OS errors surface as octree load errors."""
        path = tmp_path / "octree.adj"
        write_adjacency_map(build_adjacency_map(stored_octree), path)
        loader = MagicMock(side_effect=PermissionError("denied"))

        with pytest.raises(OctreeLoadError):
            read_adjacency_map(path, octree_loader=loader)

    def test_loader_value_error_wrapped(self, stored_octree, tmp_path):
        """Test that any loader failure surfaces as an octree load error."""
        path = tmp_path / "octree.adj"
        write_adjacency_map(build_adjacency_map(stored_octree), path)
        loader = MagicMock(side_effect=ValueError("bad octree"))
        logger = MagicMock()

        with pytest.raises(OctreeLoadError) as excinfo:
            read_adjacency_map(path, octree_loader=loader, logger=logger)

        assert isinstance(excinfo.value.__cause__, ValueError)
        logger.error.assert_called_once()
