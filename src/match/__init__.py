"""
Provider matching for FondCAS.

Decides whether each imported record describes a known canonical provider
or a new one, and links its specialty labels to canonical specialties.
"""
