"""
Audio Server Layer.

Serves library files over local HTTP, gated by cache materialization.
"""

from .audio import create_audio_app, start_audio_server

__all__ = ["create_audio_app", "start_audio_server"]
