"""
Command line interface for the oracle kit.
"""
