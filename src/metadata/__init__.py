"""
Metadata index holding the key -> file record mapping of a drive.
"""

from .address import Address, Manifest, NameRegistry, create_address, resolve_address
from .keyvalue_index import KeyValueIndex, IndexSnapshot

__all__ = ['Address', 'Manifest', 'NameRegistry', 'create_address', 'resolve_address',
           'KeyValueIndex', 'IndexSnapshot']
