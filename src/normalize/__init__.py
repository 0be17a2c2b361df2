"""
Data normalization modules for FondCAS.

Turns raw company names, street addresses, specialty labels and contact
fields into comparable keys for provider matching.
"""
