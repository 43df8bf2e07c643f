"""
Services for the Protect live viewer: NVR connections, caches, live streams.
"""
from .bridge import ProtectBridge
from .nvr import NvrService
