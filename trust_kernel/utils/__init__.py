"""Utility functions for the trust kernel."""

from trust_kernel.utils.hashing import canonicalize_json, hash_payload, hash_records

__all__ = ["canonicalize_json", "hash_payload", "hash_records"]
