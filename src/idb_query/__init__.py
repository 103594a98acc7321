"""
idb-query - Declarative queries over an indexed object store

Express select, insert, update, delete, count and last as small query
objects; the executor picks the cheapest access path (primary key,
index point, range scan or full scan) and drives the storage engine's
transactions and cursors.
"""

__version__ = "0.1.0"
__author__ = "Systems Engineering Portfolio"
