"""
Read-only HTTP query surface over a SnapshotIndex.
"""
