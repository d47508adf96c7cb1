"""Astral platform services.

Every service logs user identifiers only through hash_pii(); phone
numbers, e-mail addresses and message bodies stay out of logs.
"""
