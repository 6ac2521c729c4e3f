"""
inkframe server package.

This package provides:
- PNG to packed 4-bit framebuffer conversion for a 960x540 e-paper panel
- Chunked (quarter) framebuffer delivery to the display client
- Token-bucket admission control for ingestion and retrieval
- SQLite storage for the original images
"""

__version__ = "0.1.0"
