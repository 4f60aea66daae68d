"""
TreeMirror
==========
Differential replication and repair of a record tree and its blobs between
two storage backends.
"""

__version__ = "0.1.0"
