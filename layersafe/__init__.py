"""
layersafe - generational backup retention for individual files.

This package keeps a bounded, time-bucketed history of whole-file copies
(day, month and year slots) for every file stored into a safe directory.
"""

__version__ = "0.1.0"
