"""
Typeahead suggestion ranking for FondCAS.
"""
