"""
Domain data model for FondCAS.

Plain data types shared by the normalization, matching, estimation and
ranking stages.
"""
