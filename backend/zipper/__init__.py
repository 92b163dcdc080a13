"""
File Zipper - streams cached file manifests out as ZIP archives
"""
__version__ = "1.0.0"
