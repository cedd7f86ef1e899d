"""
SMILTune - timing editor for EPUB 3 media overlays.
"""

__version__ = "1.0.0"
