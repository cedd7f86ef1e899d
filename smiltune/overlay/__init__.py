"""
Overlay Module

Fragment synchronization engine for EPUB 3 media overlays: reads the
timeline from SMIL files, edits it, and writes it back.
"""

from smiltune.overlay.edits import FragmentEditor
from smiltune.overlay.epub_reader import EpubArchive, EpubReader, load_epub
from smiltune.overlay.errors import (
    AudioDecodeError,
    AudioResolutionError,
    EpubFormatError,
    FragmentNotFoundError,
    FragmentReferenceError,
    OverlayError,
)
from smiltune.overlay.markup import MarkupDocument
from smiltune.overlay.model import AudioFile, Chapter, Fragment, FragmentModel, Package
from smiltune.overlay.regions import Region, RegionSync
from smiltune.overlay.session import EditorSession
from smiltune.overlay.smil_writer import EpubExporter, ExportReport

__all__ = [
    "AudioDecodeError",
    "AudioFile",
    "AudioResolutionError",
    "Chapter",
    "EditorSession",
    "EpubArchive",
    "EpubExporter",
    "EpubFormatError",
    "EpubReader",
    "ExportReport",
    "Fragment",
    "FragmentEditor",
    "FragmentModel",
    "FragmentNotFoundError",
    "FragmentReferenceError",
    "MarkupDocument",
    "OverlayError",
    "Package",
    "Region",
    "RegionSync",
    "load_epub",
]
