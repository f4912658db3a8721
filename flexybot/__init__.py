"""
FlexyBot knowledge service.
Normalizes, chunks, embeds and retrieves tenant-scoped content for chatbots.
"""

__version__ = "1.0.0"
