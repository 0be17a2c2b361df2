"""
User report handling for FondCAS.

Construction, validation and time-window selection of crowd-sourced
fund availability reports.
"""
