"""Local and remote storage for recordings."""

from .file_manager import FileManager
from .object_urls import ObjectUrlRegistry
from .supabase import SupabaseStorage, SupabaseRecordStore

__all__ = [
    'FileManager',
    'ObjectUrlRegistry',
    'SupabaseStorage',
    'SupabaseRecordStore'
]
