"""Shared utilities for the Astral platform."""
from .pii import hash_pii, mask_contact, configure_pii_salt

__all__ = ["hash_pii", "mask_contact", "configure_pii_salt"]
