"""
Merge rules for FondCAS.

Monotonic merging of raw records into canonical providers and the summed
monthly view over per-service-type fund allocations.
"""
