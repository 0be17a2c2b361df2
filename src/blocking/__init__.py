"""
Key-based blocking for FondCAS.

Holds the caller-owned index that maps normalized provider keys to
canonical providers so incoming records are compared only against
providers sharing their key.
"""
