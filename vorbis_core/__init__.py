"""
Core data services for the Vorbis player.

Two subsystems: a dual-TTL, LRU-bounded item cache for library metadata and
"saved" status, and a video discovery pipeline with a persistent exclusion
set. build_core_services wires them together.
"""

__version__ = "1.0.0"
