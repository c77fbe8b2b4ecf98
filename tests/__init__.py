"""
Test package for hostmaint.
"""
