"""
FondCAS - Healthcare Provider Catalogue and Fund Availability

Reconciles provider lists published by health insurance houses into one
catalogue of canonical providers and specialties, estimates whether a
provider still has public funds for the current month, and ranks search
suggestions for the typeahead.
"""

__version__ = "1.0.0"
__author__ = "FondCAS Team"
