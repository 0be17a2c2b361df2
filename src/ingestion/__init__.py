"""
Data ingestion modules for FondCAS.

Reads irregular spreadsheet exports of contracted providers and monthly
fund allocations into raw records.
"""
