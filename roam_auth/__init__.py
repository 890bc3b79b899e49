"""
Roam Authentication Session Layer

This package keeps the authenticated identity of the Roam marketplace apps
converged across three sources: in-memory state, the persisted session cache
and the remote auth gateway.

It provides:
1. Role-specific auth contexts for customers and providers
2. A unified auth façade deriving one view over both contexts
3. De-duplicated processing of gateway session notifications
4. A Supabase-backed gateway, file storage and outbound API client
"""

__version__ = "0.1.0"
