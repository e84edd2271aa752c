"""Service layer for letta-proxy."""
