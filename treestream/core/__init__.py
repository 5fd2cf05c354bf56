"""Core abstractions shared by readers and writers.

Classification of filesystem entries, the entry identity both sides
carry, and the signal delivery they communicate through.
"""

from .events import EventEmitter
from .node import Properties, TreeEntry
from .types import CREATABLE_TYPES, FileType, classify

__all__ = [
    # Classification
    'FileType',
    'CREATABLE_TYPES',
    'classify',
    # Entries
    'TreeEntry',
    'Properties',
    # Signals
    'EventEmitter',
]
