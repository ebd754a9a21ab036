"""
Adjacency map persistence.
"""

from .adjacency_store import save, read_record, write_adjacency_map, read_adjacency_map

__all__ = ['save', 'read_record', 'write_adjacency_map', 'read_adjacency_map']
