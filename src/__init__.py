"""
FIX Terminal Client

An interactive command console for a single FIX session, with scripted
input, message inspection and session transcripts.
"""

__version__ = "1.0.0"
__description__ = "Interactive terminal client for FIX sessions"
