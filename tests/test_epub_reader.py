"""
Unit tests for smiltune.overlay.epub_reader module.
"""

import zipfile
from unittest.mock import patch

import pytest

from smiltune.overlay.epub_reader import EpubArchive, EpubReader, load_epub, parse_smil
from smiltune.overlay.errors import EpubFormatError
from smiltune.overlay.model import relative_href, resolve_path

from conftest import CHAPTER_ONE_SMIL, CONTENT_OPF, CONTAINER_XML


class TestPathResolution:
    """Tests for resolve_path and relative_href."""

    def test_resolve_parent_reference(self):
        """Test .. climbs out of the SMIL directory."""
        assert resolve_path("OEBPS/Smil/ch1.smil", "../Audio/ch1.mp3") == "OEBPS/Audio/ch1.mp3"

    def test_resolve_sibling(self):
        """Test plain and ./ references stay in the directory."""
        assert resolve_path("OEBPS/content.opf", "Text/ch1.xhtml") == "OEBPS/Text/ch1.xhtml"
        assert resolve_path("ch.smil", "./a.mp3") == "a.mp3"

    def test_relative_href_inverts_resolve(self):
        """Test relative_href gives a reference that resolves back."""
        href = relative_href("OEBPS/Smil/ch1.smil", "OEBPS/Text/ch1.xhtml")
        assert href == "../Text/ch1.xhtml"
        assert resolve_path("OEBPS/Smil/ch1.smil", href) == "OEBPS/Text/ch1.xhtml"


class TestEpubReader:
    """Tests for resolving a well-formed package."""

    def test_title(self, loaded):
        """Test dc:title is used."""
        package, _ = loaded
        assert package.title == "The Stormy Night"

    def test_chapters_in_spine_order(self, loaded):
        """Test XHTML spine items become chapters; others are skipped."""
        package, _ = loaded
        assert [c.id for c in package.chapters] == ["ch1", "ch2"]
        ch1, ch2 = package.chapters
        assert ch1.title == "Chapter One"
        assert ch1.path == "OEBPS/Text/ch1.xhtml"
        assert ch1.media_overlay == "ch1_overlay"
        assert ch2.media_overlay is None
        assert not ch1.modified

    def test_fragments(self, loaded):
        """Test pars inside a seq become ordered fragments."""
        package, _ = loaded
        fragments = package.overlays["ch1_overlay"]

        assert [f.id for f in fragments] == ["par1", "par2", "par3"]
        assert [(f.clip_begin, f.clip_end) for f in fragments] == [
            (0.0, 5.0), (5.0, 10.0), (10.0, 14.0),
        ]
        assert [f.order for f in fragments] == [0, 1, 2]
        assert fragments[0].text_src == "../Text/ch1.xhtml#p1"
        assert fragments[0].audio_src == "../Audio/ch1.wav"

    def test_cached_text(self, loaded):
        """Test fragment text is filled from the chapter markup."""
        package, _ = loaded
        texts = [f.text for f in package.overlays["ch1_overlay"]]
        assert texts == ["Hello world.", "It was a dark and stormy night.", "The end."]

    def test_audio_files(self, loaded):
        """Test audio items are loaded with a probed duration."""
        package, _ = loaded
        audio = package.audio_files["Audio/ch1.wav"]
        assert audio.path == "OEBPS/Audio/ch1.wav"
        assert audio.media_type == "audio/wav"
        assert audio.duration == pytest.approx(15.0, abs=0.01)
        assert audio.data[:4] == b"RIFF"

    def test_manifest(self, loaded):
        """Test manifest items and spine are kept."""
        package, _ = loaded
        manifest = package.manifest
        assert manifest.opf_path == "OEBPS/content.opf"
        assert manifest.base_path == "OEBPS/"
        assert manifest.spine == ["ch1", "css", "ch2"]
        assert manifest.items["ch1_overlay"].href == "Smil/ch1.smil"

    def test_untitled(self, epub_factory):
        """Test missing dc:title falls back to Untitled."""
        opf = CONTENT_OPF.replace("<dc:title>The Stormy Night</dc:title>", "")
        package, _ = load_epub(epub_factory(**{"OEBPS/content.opf": opf}))
        assert package.title == "Untitled"

    def test_missing_chapter_file_warns(self, epub_factory):
        """Test a spine item missing from the archive is skipped."""
        path = epub_factory(**{"OEBPS/Text/ch2.xhtml": None})
        with patch("smiltune.overlay.epub_reader.logger") as mock_logger:
            package, _ = load_epub(path)
        assert [c.id for c in package.chapters] == ["ch1"]
        mock_logger.warning.assert_called()

    def test_unreadable_audio_duration(self, epub_factory):
        """Test a bad audio payload keeps loading with duration 0."""
        path = epub_factory(**{"OEBPS/Audio/ch1.wav": b"not really audio"})
        with patch("smiltune.overlay.epub_reader.logger") as mock_logger:
            package, _ = load_epub(path)
        assert package.audio_files["Audio/ch1.wav"].duration == 0.0
        mock_logger.warning.assert_called()

    def test_rootfile_without_namespace(self, epub_factory):
        """Test a container.xml without the container namespace still resolves."""
        container = CONTAINER_XML.replace(
            ' xmlns="urn:oasis:names:tc:opendocument:xmlns:container"', ""
        )
        package, _ = load_epub(epub_factory(**{"META-INF/container.xml": container}))
        assert package.title == "The Stormy Night"

    def test_utf16_container_and_overlay(self, epub_factory):
        """Test XML documents in UTF-16 are decoded from their declaration."""
        container = CONTAINER_XML.replace('encoding="UTF-8"', 'encoding="UTF-16"')
        smil = CHAPTER_ONE_SMIL.replace('encoding="UTF-8"', 'encoding="UTF-16"')
        path = epub_factory(**{
            "META-INF/container.xml": container.encode("utf-16"),
            "OEBPS/Smil/ch1.smil": smil.encode("utf-16"),
        })

        package, _ = load_epub(path)
        assert package.title == "The Stormy Night"
        assert [f.id for f in package.overlays["ch1_overlay"]] == ["par1", "par2", "par3"]


class TestFatalErrors:
    """Tests for archives that cannot be loaded."""

    def test_not_a_zip(self, tmp_path):
        """Test non-zip input."""
        path = tmp_path / "broken.epub"
        path.write_bytes(b"this is not a zip")
        with pytest.raises(EpubFormatError):
            load_epub(path)

    def test_missing_container(self, epub_factory):
        """Test absent META-INF/container.xml."""
        with pytest.raises(EpubFormatError, match="container.xml"):
            load_epub(epub_factory(**{"META-INF/container.xml": None}))

    def test_container_without_rootfile(self, epub_factory):
        """Test container.xml with no rootfile pointer."""
        container = '<container xmlns="urn:oasis:names:tc:opendocument:xmlns:container"/>'
        with pytest.raises(EpubFormatError, match="rootfile"):
            load_epub(epub_factory(**{"META-INF/container.xml": container}))

    def test_unparseable_container(self, epub_factory):
        """Test malformed container.xml."""
        with pytest.raises(EpubFormatError):
            load_epub(epub_factory(**{"META-INF/container.xml": "<container><rootfiles>"}))

    def test_container_not_in_declared_encoding(self, epub_factory):
        """Test bytes that do not decode as declared are a format error."""
        container = CONTAINER_XML.encode("utf-8").replace(b"1.0\" xmlns", b"1.0\xff\xfe\" xmlns")
        with pytest.raises(EpubFormatError, match="container.xml"):
            load_epub(epub_factory(**{"META-INF/container.xml": container}))

    def test_missing_opf(self, epub_factory):
        """Test rootfile pointing at a missing document."""
        with pytest.raises(EpubFormatError, match="OPF"):
            load_epub(epub_factory(**{"OEBPS/content.opf": None}))

    def test_unparseable_opf(self, epub_factory):
        """Test malformed package document."""
        with pytest.raises(EpubFormatError):
            load_epub(epub_factory(**{"OEBPS/content.opf": "<package><manifest>"}))

    def test_format_error_is_value_error(self):
        """Test the error kind is catchable as ValueError."""
        assert issubclass(EpubFormatError, ValueError)


class TestParseSmil:
    """Tests for parse_smil."""

    def test_seq_document(self):
        """Test pars under one level of seq."""
        assert [f.id for f in parse_smil(CHAPTER_ONE_SMIL)] == ["par1", "par2", "par3"]

    def test_flat_body_and_generated_ids(self):
        """Test pars directly in body and ids for anonymous pars."""
        smil = (
            '<smil xmlns="http://www.w3.org/ns/SMIL" version="3.0"><body>'
            '<par><text src="c.xhtml#a"/><audio src="a.mp3" clipBegin="1s" clipEnd="2s"/></par>'
            '<par id="named"><text src="c.xhtml#b"/><audio src="a.mp3" clipBegin="2s" clipEnd="3s"/></par>'
            "</body></smil>"
        )
        fragments = parse_smil(smil)
        assert [f.id for f in fragments] == ["fragment-0", "named"]
        assert fragments[1].clip_begin == 2.0

    def test_incomplete_pars_skipped(self):
        """Test pars without text or audio are ignored."""
        smil = (
            '<smil xmlns="http://www.w3.org/ns/SMIL"><body>'
            '<par id="no-audio"><text src="c.xhtml#a"/></par>'
            '<par id="no-text"><audio src="a.mp3" clipBegin="0s" clipEnd="1s"/></par>'
            '<par id="ok"><text src="c.xhtml#b"/><audio src="a.mp3" clipBegin="1s" clipEnd="2s"/></par>'
            "</body></smil>"
        )
        fragments = parse_smil(smil)
        assert [f.id for f in fragments] == ["ok"]
        assert fragments[0].order == 0

    def test_missing_clip_literals(self):
        """Test absent clipBegin/clipEnd read as zero."""
        smil = (
            '<smil xmlns="http://www.w3.org/ns/SMIL"><body>'
            '<par id="x"><text src="c.xhtml#a"/><audio src="a.mp3"/></par>'
            "</body></smil>"
        )
        fragment = parse_smil(smil)[0]
        assert (fragment.clip_begin, fragment.clip_end) == (0.0, 0.0)

    def test_unparseable_clip_literal(self):
        """Test a bad literal becomes 0 with a warning."""
        smil = (
            '<smil xmlns="http://www.w3.org/ns/SMIL"><body>'
            '<par id="x"><text src="c.xhtml#a"/><audio src="a.mp3" clipBegin="soon" clipEnd="2s"/></par>'
            "</body></smil>"
        )
        with patch("smiltune.overlay.timecode.logger") as mock_logger:
            fragment = parse_smil(smil)[0]
        assert fragment.clip_begin == 0.0
        assert fragment.clip_end == 2.0
        mock_logger.warning.assert_called_once()

    def test_empty_body(self):
        """Test a SMIL without body yields nothing."""
        assert parse_smil('<smil xmlns="http://www.w3.org/ns/SMIL"/>') == []


class TestEpubArchive:
    """Tests for the archive accessor."""

    def test_staged_write_visible(self, epub_path):
        """Test overrides are read back before saving."""
        archive = EpubArchive.open(epub_path)
        archive.write_text("OEBPS/Styles/style.css", "p {}")
        assert archive.read_text("OEBPS/Styles/style.css") == "p {}"

    def test_new_entry(self, epub_path, tmp_path):
        """Test entries can be added."""
        archive = EpubArchive.open(epub_path)
        archive.write_text("OEBPS/extra.txt", "hello")
        assert archive.exists("OEBPS/extra.txt")
        assert "OEBPS/extra.txt" in archive.names()

        out = archive.save(tmp_path / "out.epub")
        with zipfile.ZipFile(out) as zf:
            assert zf.read("OEBPS/extra.txt") == b"hello"

    def test_save_keeps_mimetype_first_and_stored(self, epub_path, tmp_path):
        """Test mimetype stays the first, uncompressed entry."""
        out = EpubArchive.open(epub_path).save(tmp_path / "out.epub")
        with zipfile.ZipFile(out) as zf:
            first = zf.infolist()[0]
            assert first.filename == "mimetype"
            assert first.compress_type == zipfile.ZIP_STORED
            assert zf.read("mimetype") == b"application/epub+zip"

    def test_save_twice(self, epub_path, tmp_path):
        """Test the same archive can be saved more than once."""
        archive = EpubArchive.open(epub_path)
        archive.save(tmp_path / "a.epub")
        archive.save(tmp_path / "b.epub")
        with zipfile.ZipFile(tmp_path / "a.epub") as a, zipfile.ZipFile(tmp_path / "b.epub") as b:
            assert a.namelist() == b.namelist()

    def test_from_bytes(self, epub_path):
        """Test construction from raw bytes."""
        archive = EpubArchive.from_bytes(epub_path.read_bytes())
        assert archive.exists("META-INF/container.xml")
        assert not archive.exists("nope")

    def test_reader_uses_archive(self, epub_path):
        """Test EpubReader works on an archive object."""
        package = EpubReader(EpubArchive.open(epub_path)).parse()
        assert package.chapters
