"""
File Zipper models

- manifest.py: FileDescriptor, Manifest and its JSON adapter
"""
from .manifest import FileDescriptor, Manifest, manifest_adapter

__all__ = ["FileDescriptor", "Manifest", "manifest_adapter"]
