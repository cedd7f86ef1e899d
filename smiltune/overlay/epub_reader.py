"""
EPUB Reader Module

Archive accessor plus the resolver that turns a packed EPUB 3 with
media overlays into a Package: chapters in spine order, one fragment
list per SMIL file, and the audio payloads.
"""

import io
import xml.etree.ElementTree as ET
import zipfile
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

import soundfile as sf

from smiltune.overlay.errors import EpubFormatError
from smiltune.overlay.markup import MarkupDocument
from smiltune.overlay.model import (
    SMIL_MEDIA_TYPE,
    XHTML_MEDIA_TYPE,
    AudioFile,
    Chapter,
    Fragment,
    Manifest,
    ManifestItem,
    Package,
    resolve_path,
)
from smiltune.overlay.timecode import parse_clock_value
from smiltune.utils import logger

CONTAINER_PATH = "META-INF/container.xml"

CONTAINER_NS = "urn:oasis:names:tc:opendocument:xmlns:container"
OPF_NS = "http://www.idpf.org/2007/opf"
DC_NS = "http://purl.org/dc/elements/1.1/"
SMIL_NS = "http://www.w3.org/ns/SMIL"


def _clone_info(info: zipfile.ZipInfo) -> zipfile.ZipInfo:
    """Fresh ZipInfo with the same name, timestamp and compression."""
    clone = zipfile.ZipInfo(info.filename, date_time=info.date_time)
    clone.compress_type = info.compress_type
    clone.external_attr = info.external_attr
    clone.create_system = info.create_system
    clone.comment = info.comment
    return clone


class EpubArchive:
    """
    Random-access view of the EPUB zip with staged writes.

    Entries written through write_bytes/write_text replace the original
    content on save(); every other entry is copied byte for byte.
    """

    def __init__(self, data: bytes):
        try:
            self._zip = zipfile.ZipFile(io.BytesIO(data))
        except zipfile.BadZipFile as e:
            raise EpubFormatError(f"Invalid EPUB: not a zip archive ({e})") from e
        self._overrides: Dict[str, bytes] = {}

    @classmethod
    def open(cls, path: Path) -> "EpubArchive":
        return cls(Path(path).read_bytes())

    @classmethod
    def from_bytes(cls, data: bytes) -> "EpubArchive":
        return cls(data)

    def names(self) -> List[str]:
        names = [info.filename for info in self._zip.infolist()]
        names.extend(n for n in self._overrides if n not in names)
        return names

    def exists(self, name: str) -> bool:
        if name in self._overrides:
            return True
        try:
            self._zip.getinfo(name)
        except KeyError:
            return False
        return True

    def read_bytes(self, name: str) -> bytes:
        if name in self._overrides:
            return self._overrides[name]
        return self._zip.read(name)

    def read_text(self, name: str) -> str:
        return self.read_bytes(name).decode("utf-8")

    def write_bytes(self, name: str, data: bytes) -> None:
        self._overrides[name] = data

    def write_text(self, name: str, text: str) -> None:
        self.write_bytes(name, text.encode("utf-8"))

    def save(self, output_path: Path) -> Path:
        """Write the archive with staged changes applied."""
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)

        infos = sorted(
            self._zip.infolist(),
            key=lambda info: info.filename != "mimetype",
        )
        with zipfile.ZipFile(output_path, "w") as out:
            for info in infos:
                if info.filename in self._overrides:
                    data = self._overrides[info.filename]
                else:
                    data = self._zip.read(info)
                out.writestr(_clone_info(info), data)
            written = {info.filename for info in infos}
            for name, data in self._overrides.items():
                if name not in written:
                    out.writestr(name, data, compress_type=zipfile.ZIP_DEFLATED)

        return output_path


def _parse_xml(source: Union[str, bytes], what: str) -> ET.Element:
    """Parse XML; bytes let the parser honour the declared encoding."""
    try:
        return ET.fromstring(source)
    except ET.ParseError as e:
        raise EpubFormatError(f"Invalid EPUB: cannot parse {what} ({e})") from e


def probe_duration(data: bytes) -> float:
    """Best-effort duration of an audio payload, 0.0 when unknown."""
    info = sf.info(io.BytesIO(data))
    return float(info.duration)


class EpubReader:
    """
    Resolve an EpubArchive into a Package.

    Any missing or unparseable container, rootfile pointer or package
    document raises EpubFormatError and nothing is returned.
    """

    def __init__(self, archive: EpubArchive):
        self.archive = archive
        self.opf_path = ""
        self._opf: Optional[ET.Element] = None

    def parse(self) -> Package:
        self.opf_path = self._find_opf_path()
        self._opf = self._read_opf()

        manifest = self._parse_manifest()
        chapters = self._parse_chapters(manifest)
        overlays = self._parse_overlays(manifest, chapters)
        audio_files = self._parse_audio_files(manifest)

        return Package(
            title=self._parse_title(),
            manifest=manifest,
            chapters=chapters,
            overlays=overlays,
            audio_files=audio_files,
        )

    def _find_opf_path(self) -> str:
        if not self.archive.exists(CONTAINER_PATH):
            raise EpubFormatError("Invalid EPUB: Missing container.xml")
        root = _parse_xml(self.archive.read_bytes(CONTAINER_PATH), "container.xml")
        rootfile = root.find(f".//{{{CONTAINER_NS}}}rootfile")
        if rootfile is None:
            rootfile = root.find(".//rootfile")
        full_path = rootfile.get("full-path") if rootfile is not None else None
        if not full_path:
            raise EpubFormatError("Invalid EPUB: container.xml has no rootfile")
        return full_path

    def _read_opf(self) -> ET.Element:
        if not self.archive.exists(self.opf_path):
            raise EpubFormatError(f"Invalid EPUB: Missing OPF file {self.opf_path}")
        try:
            text = self.archive.read_text(self.opf_path)
        except UnicodeDecodeError as e:
            raise EpubFormatError(f"Invalid EPUB: OPF is not UTF-8 ({e})") from e
        return _parse_xml(text, self.opf_path)

    def _parse_title(self) -> str:
        title = self._opf.find(f".//{{{DC_NS}}}title")
        if title is not None and title.text and title.text.strip():
            return title.text.strip()
        return "Untitled"

    def _parse_manifest(self) -> Manifest:
        manifest = Manifest(opf_path=self.opf_path)
        for item in self._opf.iter(f"{{{OPF_NS}}}item"):
            item_id = item.get("id")
            href = item.get("href")
            if not item_id or not href:
                continue
            manifest.items[item_id] = ManifestItem(
                id=item_id,
                href=href,
                media_type=item.get("media-type", ""),
                properties=item.get("properties", ""),
                media_overlay=item.get("media-overlay"),
            )
        for itemref in self._opf.iter(f"{{{OPF_NS}}}itemref"):
            idref = itemref.get("idref")
            if idref:
                manifest.spine.append(idref)
        return manifest

    def _parse_chapters(self, manifest: Manifest) -> List[Chapter]:
        chapters = []
        for idref in manifest.spine:
            item = manifest.items.get(idref)
            if item is None or item.media_type != XHTML_MEDIA_TYPE:
                continue

            path = manifest.archive_path(item.href)
            if not self.archive.exists(path):
                logger.warning(f"Spine item {idref} missing from archive: {path}")
                continue

            content = MarkupDocument(self.archive.read_bytes(path))
            chapters.append(Chapter(
                id=idref,
                title=content.title or item.href,
                href=item.href,
                path=path,
                content=content,
                media_overlay=item.media_overlay,
            ))
        return chapters

    def _parse_overlays(
        self,
        manifest: Manifest,
        chapters: List[Chapter],
    ) -> Dict[str, List[Fragment]]:
        by_overlay = {c.media_overlay: c for c in chapters if c.media_overlay}
        overlays = {}

        for item in manifest.items.values():
            if item.media_type != SMIL_MEDIA_TYPE:
                continue
            path = manifest.archive_path(item.href)
            if not self.archive.exists(path):
                logger.warning(f"Overlay {item.id} missing from archive: {path}")
                continue

            fragments = parse_smil(self.archive.read_bytes(path))
            chapter = by_overlay.get(item.id)
            if chapter is not None:
                for fragment in fragments:
                    fragment.text = chapter.content.text_of(fragment.text_id or "") or ""
            overlays[item.id] = fragments

        return overlays

    def _parse_audio_files(self, manifest: Manifest) -> Dict[str, AudioFile]:
        audio_files = {}
        for item in manifest.items.values():
            if not item.media_type.startswith("audio/"):
                continue
            path = manifest.archive_path(item.href)
            if not self.archive.exists(path):
                logger.warning(f"Audio {item.href} missing from archive")
                continue

            data = self.archive.read_bytes(path)
            try:
                duration = probe_duration(data)
            except (RuntimeError, TypeError) as e:
                # libsndfile errors derive from RuntimeError
                logger.warning(f"Could not read duration of {item.href}: {e}")
                duration = 0.0

            audio_files[item.href] = AudioFile(
                src=item.href,
                path=path,
                data=data,
                media_type=item.media_type,
                duration=duration,
            )
        return audio_files


def _local_name(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _child(element: ET.Element, name: str) -> Optional[ET.Element]:
    for child in element:
        if _local_name(child.tag) == name:
            return child
    return None


def parse_smil(content: Union[str, bytes]) -> List[Fragment]:
    """
    Decode the par declarations of a SMIL document.

    Pars may sit directly in the body or inside one level of seq
    grouping; document order is kept. Pars without both a text and an
    audio child are skipped.
    """
    root = _parse_xml(content, "SMIL")
    body = _child(root, "body")
    if body is None:
        return []

    pars = []
    for node in body:
        name = _local_name(node.tag)
        if name == "par":
            pars.append(node)
        elif name == "seq":
            pars.extend(p for p in node if _local_name(p.tag) == "par")

    fragments = []
    for index, par in enumerate(pars):
        text = _child(par, "text")
        audio = _child(par, "audio")
        if text is None or audio is None:
            continue
        fragments.append(Fragment(
            id=par.get("id") or f"fragment-{index}",
            text_src=text.get("src", ""),
            audio_src=audio.get("src", ""),
            clip_begin=parse_clock_value(audio.get("clipBegin") or "0s"),
            clip_end=parse_clock_value(audio.get("clipEnd") or "0s"),
            order=len(fragments),
        ))
    return fragments


def load_epub(path: Path) -> Tuple[Package, EpubArchive]:
    """
    Open and parse an EPUB file.

    Returns:
        (Package, EpubArchive)
    """
    archive = EpubArchive.open(path)
    package = EpubReader(archive).parse()
    return package, archive
