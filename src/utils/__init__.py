"""
Shared utilities for the FIX terminal client.
"""
