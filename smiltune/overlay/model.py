"""
Fragment Model

In-memory timeline of a talking book: chapters, their overlays as
ordered fragment lists, and the audio payloads they point at.
"""

import posixpath
from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional, Tuple

from smiltune.overlay.errors import FragmentNotFoundError
from smiltune.overlay.markup import MarkupDocument

XHTML_MEDIA_TYPE = "application/xhtml+xml"
SMIL_MEDIA_TYPE = "application/smil+xml"


def resolve_path(from_file: str, to_ref: str) -> str:
    """
    Resolve a reference relative to the directory of from_file.

    Example:
        resolve_path("OEBPS/Smil/ch1.smil", "../Audio/ch1.mp3")
        -> "OEBPS/Audio/ch1.mp3"
    """
    parts = from_file.split("/")[:-1]
    for part in to_ref.split("/"):
        if part == "..":
            if parts:
                parts.pop()
        elif part not in (".", ""):
            parts.append(part)
    return "/".join(parts)


def relative_href(from_file: str, to_file: str) -> str:
    """Reference to to_file as written inside from_file."""
    start = posixpath.dirname(from_file) or "."
    return posixpath.relpath(to_file, start)


@dataclass
class Fragment:
    """One text span paired with an audio clip range."""

    id: str
    text_src: str  # "chapter.xhtml#element-id", relative to the SMIL file
    audio_src: str  # Relative to the SMIL file
    clip_begin: float  # Seconds
    clip_end: float  # Seconds
    text: str = ""  # Cached text of the referenced element
    order: float = 0

    @property
    def text_path(self) -> str:
        return self.text_src.split("#", 1)[0]

    @property
    def text_id(self) -> Optional[str]:
        if "#" not in self.text_src:
            return None
        return self.text_src.split("#", 1)[1] or None

    @property
    def duration(self) -> float:
        return self.clip_end - self.clip_begin

    def contains(self, time: float, epsilon: float = 0.0) -> bool:
        """Half-open containment test, shifted left by epsilon."""
        return self.clip_begin - epsilon < time < self.clip_end - epsilon


@dataclass
class AudioFile:
    """Audio payload referenced by overlays. Never re-encoded."""

    src: str  # OPF-relative href
    path: str  # Archive path
    data: bytes
    media_type: str = "audio/mpeg"
    duration: float = 0.0  # Best effort, 0.0 when unknown


@dataclass
class Chapter:
    """A spine document of the package."""

    id: str
    title: str
    href: str  # OPF-relative
    path: str  # Archive path
    content: MarkupDocument
    media_overlay: Optional[str] = None
    modified: bool = False


@dataclass
class ManifestItem:
    """Entry of the package manifest."""

    id: str
    href: str
    media_type: str
    properties: str = ""
    media_overlay: Optional[str] = None


@dataclass
class Manifest:
    """Raw manifest and spine record, kept for export path resolution."""

    opf_path: str
    items: Dict[str, ManifestItem] = field(default_factory=dict)
    spine: List[str] = field(default_factory=list)

    @property
    def base_path(self) -> str:
        """Directory prefix of the OPF, with trailing slash or empty."""
        head = posixpath.dirname(self.opf_path)
        return f"{head}/" if head else ""

    def archive_path(self, href: str) -> str:
        return resolve_path(self.opf_path, href)


@dataclass
class Package:
    """Complete parsed talking book."""

    title: str
    manifest: Manifest
    chapters: List[Chapter] = field(default_factory=list)
    overlays: Dict[str, List[Fragment]] = field(default_factory=dict)
    audio_files: Dict[str, AudioFile] = field(default_factory=dict)


class FragmentModel:
    """
    Versioned container for a Package.

    Read accessors are public. Mutations go through FragmentEditor,
    which finishes every operation with commit().
    """

    def __init__(self, package: Package):
        self.package = package
        self.version = 0

    # -- read accessors ---------------------------------------------------

    @property
    def chapters(self) -> List[Chapter]:
        return self.package.chapters

    @property
    def overlay_ids(self) -> List[str]:
        return list(self.package.overlays)

    def chapter(self, chapter_id: str) -> Optional[Chapter]:
        for chapter in self.package.chapters:
            if chapter.id == chapter_id:
                return chapter
        return None

    def chapter_for_overlay(self, overlay_id: str) -> Optional[Chapter]:
        for chapter in self.package.chapters:
            if chapter.media_overlay == overlay_id:
                return chapter
        return None

    def fragments(self, overlay_id: str) -> List[Fragment]:
        return self.package.overlays.get(overlay_id, [])

    def fragments_for_chapter(self, chapter_id: str) -> List[Fragment]:
        chapter = self.chapter(chapter_id)
        if chapter is None or not chapter.media_overlay:
            return []
        return self.fragments(chapter.media_overlay)

    def locate(self, fragment_id: str) -> Tuple[str, int]:
        """Return (overlay_id, index) of a fragment."""
        for overlay_id, fragments in self.package.overlays.items():
            for index, fragment in enumerate(fragments):
                if fragment.id == fragment_id:
                    return overlay_id, index
        raise FragmentNotFoundError(fragment_id)

    def fragment(self, fragment_id: str) -> Fragment:
        overlay_id, index = self.locate(fragment_id)
        return self.package.overlays[overlay_id][index]

    def overlay_href(self, overlay_id: str) -> Optional[str]:
        item = self.package.manifest.items.get(overlay_id)
        return item.href if item else None

    def audio_for_overlay(self, overlay_id: str) -> Optional[AudioFile]:
        """
        Audio payload of an overlay.

        The first fragment's audio reference is resolved against the
        SMIL file's own location; the raw reference is tried as well.
        """
        fragments = self.fragments(overlay_id)
        if not fragments:
            return None
        audio_src = fragments[0].audio_src
        smil_href = self.overlay_href(overlay_id) or ""
        resolved = resolve_path(smil_href, audio_src)
        audio_files = self.package.audio_files
        return audio_files.get(resolved) or audio_files.get(audio_src)

    def is_orphaned(self, fragment: Fragment, chapter: Optional[Chapter]) -> bool:
        text_id = fragment.text_id
        if chapter is None or not text_id:
            return True
        return chapter.content.find_by_id(text_id) is None

    def orphaned_fragments(self, overlay_id: str) -> List[Fragment]:
        chapter = self.chapter_for_overlay(overlay_id)
        if chapter is None:
            return list(self.fragments(overlay_id))
        ids = chapter.content.ids()
        return [f for f in self.fragments(overlay_id) if f.text_id not in ids]

    # -- mutation support -------------------------------------------------

    def commit(self, overlay_id: str) -> None:
        """Sort an overlay by clip_begin, renumber order and bump the version."""
        fragments = self.package.overlays.get(overlay_id)
        if fragments is None:
            return
        fragments.sort(key=lambda f: (f.clip_begin, f.order))
        for index, fragment in enumerate(fragments):
            fragment.order = index
        self.version += 1

    def snapshot(self) -> Package:
        """Independent copy of the package for export."""
        package = self.package
        chapters = [
            replace(chapter, content=chapter.content.copy())
            for chapter in package.chapters
        ]
        overlays = {
            overlay_id: [replace(f) for f in fragments]
            for overlay_id, fragments in package.overlays.items()
        }
        manifest = Manifest(
            opf_path=package.manifest.opf_path,
            items={k: replace(v) for k, v in package.manifest.items.items()},
            spine=list(package.manifest.spine),
        )
        return Package(
            title=package.title,
            manifest=manifest,
            chapters=chapters,
            overlays=overlays,
            audio_files=dict(package.audio_files),
        )
