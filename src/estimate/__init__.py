"""
Fund availability estimation for FondCAS.
"""
