"""
Common utilities shared by the auth layer: logging, serialization and the
pluggable key-value cache used for persisted sessions.
"""
