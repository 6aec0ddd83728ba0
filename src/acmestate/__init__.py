"""
ACME resource lifecycle client.
"""
__version__ = '0.1.0'
