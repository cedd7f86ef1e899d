"""Pytest configuration and shared fixtures for smiltune tests."""

import io
import zipfile
from pathlib import Path
from typing import Dict, Union

import numpy as np
import pytest
import soundfile as sf

from smiltune.overlay.edits import FragmentEditor
from smiltune.overlay.epub_reader import load_epub
from smiltune.overlay.markup import MarkupDocument
from smiltune.overlay.model import (
    Chapter,
    Fragment,
    FragmentModel,
    Manifest,
    ManifestItem,
    Package,
)
from smiltune.utils.preferences import PreferenceStore

SAMPLE_RATE = 8000
AUDIO_SECONDS = 15.0

CONTAINER_XML = """<?xml version="1.0" encoding="UTF-8"?>
<container version="1.0" xmlns="urn:oasis:names:tc:opendocument:xmlns:container">
  <rootfiles>
    <rootfile full-path="OEBPS/content.opf" media-type="application/oebps-package+xml"/>
  </rootfiles>
</container>
"""

CONTENT_OPF = """<?xml version="1.0" encoding="UTF-8"?>
<package xmlns="http://www.idpf.org/2007/opf" version="3.0" unique-identifier="uid">
  <metadata xmlns:dc="http://purl.org/dc/elements/1.1/">
    <dc:identifier id="uid">urn:uuid:0000-test</dc:identifier>
    <dc:title>The Stormy Night</dc:title>
    <dc:language>en</dc:language>
    <meta property="dcterms:modified">2024-01-01T00:00:00Z</meta>
    <meta property="media:active-class">-epub-media-overlay-active</meta>
    <meta property="media:duration" refines="#ch1_overlay">0:00:14.000</meta>
    <meta property="media:duration">0:00:14.000</meta>
  </metadata>
  <manifest>
    <item id="ch1" href="Text/ch1.xhtml" media-type="application/xhtml+xml" media-overlay="ch1_overlay"/>
    <item id="ch2" href="Text/ch2.xhtml" media-type="application/xhtml+xml"/>
    <item id="ch1_overlay" href="Smil/ch1.smil" media-type="application/smil+xml"/>
    <item id="audio1" href="Audio/ch1.wav" media-type="audio/wav"/>
    <item id="css" href="Styles/style.css" media-type="text/css"/>
  </manifest>
  <spine>
    <itemref idref="ch1"/>
    <itemref idref="css"/>
    <itemref idref="ch2"/>
  </spine>
</package>
"""

CHAPTER_ONE = """<?xml version="1.0" encoding="UTF-8"?>
<html xmlns="http://www.w3.org/1999/xhtml" xmlns:epub="http://www.idpf.org/2007/ops">
<head><title>Chapter One</title></head>
<body>
<p id="p1">Hello world.</p>
<p id="p2" class="line">It was a <em class="x">dark and stormy</em> night.</p>
<p id="p3">The end.</p>
</body>
</html>
"""

CHAPTER_TWO = """<?xml version="1.0" encoding="UTF-8"?>
<html xmlns="http://www.w3.org/1999/xhtml">
<head><title>Chapter Two</title></head>
<body><p id="q1">No narration here.</p></body>
</html>
"""

CHAPTER_ONE_SMIL = """<?xml version="1.0" encoding="UTF-8"?>
<smil xmlns="http://www.w3.org/ns/SMIL" xmlns:epub="http://www.idpf.org/2007/ops" version="3.0">
  <body>
    <seq id="seq1" epub:textref="../Text/ch1.xhtml">
      <par id="par1">
        <text src="../Text/ch1.xhtml#p1"/>
        <audio src="../Audio/ch1.wav" clipBegin="0:00:00.000" clipEnd="0:00:05.000"/>
      </par>
      <par id="par2">
        <text src="../Text/ch1.xhtml#p2"/>
        <audio src="../Audio/ch1.wav" clipBegin="5s" clipEnd="10.000s"/>
      </par>
      <par id="par3">
        <text src="../Text/ch1.xhtml#p3"/>
        <audio src="../Audio/ch1.wav" clipBegin="10" clipEnd="14"/>
      </par>
    </seq>
  </body>
</smil>
"""

STYLE_CSS = "p { margin: 0; }\n.-epub-media-overlay-active { background: yellow; }\n"


def make_wav(seconds: float = AUDIO_SECONDS, sample_rate: int = SAMPLE_RATE) -> bytes:
    """A quiet sine tone encoded as 16-bit PCM WAV."""
    t = np.arange(int(seconds * sample_rate)) / sample_rate
    samples = 0.25 * np.sin(2 * np.pi * 220.0 * t)
    buffer = io.BytesIO()
    sf.write(buffer, samples.astype(np.float32), sample_rate, format="WAV", subtype="PCM_16")
    return buffer.getvalue()


def default_entries() -> Dict[str, Union[str, bytes]]:
    return {
        "mimetype": "application/epub+zip",
        "META-INF/container.xml": CONTAINER_XML,
        "OEBPS/content.opf": CONTENT_OPF,
        "OEBPS/Text/ch1.xhtml": CHAPTER_ONE,
        "OEBPS/Text/ch2.xhtml": CHAPTER_TWO,
        "OEBPS/Smil/ch1.smil": CHAPTER_ONE_SMIL,
        "OEBPS/Audio/ch1.wav": make_wav(),
        "OEBPS/Styles/style.css": STYLE_CSS,
    }


def write_epub(path: Path, entries: Dict[str, Union[str, bytes, None]]) -> Path:
    """Zip entries into an EPUB; a None value leaves the entry out."""
    with zipfile.ZipFile(path, "w") as zf:
        for name, data in entries.items():
            if data is None:
                continue
            if isinstance(data, str):
                data = data.encode("utf-8")
            compress = zipfile.ZIP_STORED if name == "mimetype" else zipfile.ZIP_DEFLATED
            zf.writestr(name, data, compress_type=compress)
    return path


@pytest.fixture
def epub_factory(tmp_path):
    """Build an EPUB from the default entries with per-test overrides."""

    def factory(name: str = "book.epub", **overrides):
        entries = default_entries()
        for key, value in overrides.items():
            entries[key] = value
        return write_epub(tmp_path / name, entries)

    return factory


@pytest.fixture
def epub_path(epub_factory):
    return epub_factory()


@pytest.fixture
def loaded(epub_path):
    """(Package, EpubArchive) parsed from the default EPUB."""
    return load_epub(epub_path)


@pytest.fixture
def model(loaded):
    return FragmentModel(loaded[0])


@pytest.fixture
def editor(model):
    return FragmentEditor(model, min_duration=0.1, epsilon=0.01, gap_policy="keep")


@pytest.fixture
def preferences():
    return PreferenceStore()


@pytest.fixture
def timeline_factory():
    """
    Build an in-memory model with one chapter and one overlay.

    Each span is (begin, end); paragraph ids are p1..pN and fragment ids
    f1..fN.
    """

    def factory(spans):
        paragraphs = "".join(
            f'<p id="p{i}">Sentence number {i}.</p>' for i in range(1, len(spans) + 1)
        )
        content = MarkupDocument(
            f'<html xmlns="http://www.w3.org/1999/xhtml"><body>{paragraphs}</body></html>'
        )
        fragments = [
            Fragment(
                id=f"f{i}",
                text_src=f"chapter.xhtml#p{i}",
                audio_src="audio.wav",
                clip_begin=begin,
                clip_end=end,
                text=f"Sentence number {i}.",
                order=i - 1,
            )
            for i, (begin, end) in enumerate(spans, start=1)
        ]
        manifest = Manifest(
            opf_path="content.opf",
            items={
                "chapter": ManifestItem("chapter", "chapter.xhtml", "application/xhtml+xml",
                                        media_overlay="overlay"),
                "overlay": ManifestItem("overlay", "chapter.smil", "application/smil+xml"),
            },
            spine=["chapter"],
        )
        chapter = Chapter(
            id="chapter",
            title="Chapter",
            href="chapter.xhtml",
            path="chapter.xhtml",
            content=content,
            media_overlay="overlay",
        )
        package = Package(
            title="Timeline",
            manifest=manifest,
            chapters=[chapter],
            overlays={"overlay": fragments},
        )
        return FragmentModel(package)

    return factory


def bounds(model: FragmentModel, overlay_id: str = "overlay"):
    """[(id, begin, end)] of an overlay, rounded to milliseconds."""
    return [
        (f.id, round(f.clip_begin, 3), round(f.clip_end, 3))
        for f in model.fragments(overlay_id)
    ]


@pytest.fixture
def spans_of():
    return bounds
