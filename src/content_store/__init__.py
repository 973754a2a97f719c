"""
Content-addressed blob stores a drive can keep its file contents in.
"""

from .data_store import DataStore, BlockReader
from .ipfs_store import IPFSStore, api_url, DEFAULT_API_ADDRESS

__all__ = ['DataStore', 'BlockReader', 'IPFSStore', 'api_url', 'DEFAULT_API_ADDRESS']
