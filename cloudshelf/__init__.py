"""
cloudshelf: local cache management for media libraries backed by cloud-storage
sync providers.
"""

__version__ = "0.3.0"
