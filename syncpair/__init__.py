"""
syncpair - two-way rsync synchronisation of a local tree with a remote one
"""

__version__ = "0.1.0"
