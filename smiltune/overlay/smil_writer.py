"""
SMIL Writer Module

Regenerates overlay documents and media:duration metadata from the
fragment model and writes them back into the original archive.
"""

import posixpath
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional
from xml.sax.saxutils import quoteattr

from smiltune.overlay.epub_reader import EpubArchive
from smiltune.overlay.model import Fragment, FragmentModel, Package, relative_href
from smiltune.overlay.timecode import format_clip_value, format_duration
from smiltune.utils import logger
from smiltune.utils.config import config

_DURATION_PAIRED = re.compile(
    r"[ \t]*<(?:\w+:)?meta\b[^>]*property=[\"']media:duration[\"'][^>]*(?<!/)>.*?</(?:\w+:)?meta>[ \t]*\r?\n?",
    re.DOTALL,
)
_DURATION_EMPTY = re.compile(
    r"[ \t]*<(?:\w+:)?meta\b[^>]*property=[\"']media:duration[\"'][^>]*/>[ \t]*\r?\n?"
)
_METADATA_CLOSE = re.compile(r"</(?:(\w+):)?metadata\s*>")


def build_smil(
    fragments: List[Fragment],
    text_ref: str,
    seq_id: str,
    precision: int = 3,
) -> str:
    """
    Render an overlay as a SMIL 3.0 document.

    Args:
        fragments: Fragments in playback order
        text_ref: Chapter document as referenced from the SMIL file
        seq_id: Id of the wrapping seq element
        precision: Decimal places of clip values

    Returns:
        Serialized SMIL document
    """
    lines = [
        '<?xml version="1.0" encoding="UTF-8"?>',
        '<smil xmlns="http://www.w3.org/ns/SMIL" '
        'xmlns:epub="http://www.idpf.org/2007/ops" version="3.0">',
        "  <body>",
        f"    <seq id={quoteattr(seq_id)} epub:textref={quoteattr(text_ref)}>",
    ]
    for fragment in fragments:
        lines.extend([
            f"      <par id={quoteattr(fragment.id)}>",
            f"        <text src={quoteattr(fragment.text_src)}/>",
            f"        <audio src={quoteattr(fragment.audio_src)}"
            f" clipBegin={quoteattr(format_clip_value(fragment.clip_begin, precision))}"
            f" clipEnd={quoteattr(format_clip_value(fragment.clip_end, precision))}/>",
            "      </par>",
        ])
    lines.extend([
        "    </seq>",
        "  </body>",
        "</smil>",
        "",
    ])
    return "\n".join(lines)


def update_opf_durations(opf_content: str, durations: Dict[str, float]) -> str:
    """
    Replace media:duration metadata in a package document.

    Existing entries are removed, then one entry per overlay and one
    un-refined total are inserted before the closing metadata tag. The
    rest of the document is left byte for byte as it was.
    """
    updated = _DURATION_PAIRED.sub("", opf_content)
    updated = _DURATION_EMPTY.sub("", updated)

    closes = list(_METADATA_CLOSE.finditer(updated))
    if not closes:
        logger.warning("Package document has no metadata element; durations not written")
        return updated
    close = closes[-1]
    prefix = f"{close.group(1)}:" if close.group(1) else ""

    entries = []
    for overlay_id, duration in durations.items():
        entries.append(
            f'    <{prefix}meta property="media:duration" refines="#{overlay_id}">'
            f"{format_duration(duration)}</{prefix}meta>"
        )
    entries.append(
        f'    <{prefix}meta property="media:duration">'
        f"{format_duration(sum(durations.values()))}</{prefix}meta>"
    )

    insert_at = close.start()
    line_start = updated.rfind("\n", 0, insert_at) + 1
    if updated[line_start:insert_at].strip():
        block = "\n" + "\n".join(entries) + "\n"
    else:
        # Closing tag on its own line: insert above it, keep its indentation
        block = "\n".join(entries) + "\n"
        insert_at = line_start

    return updated[:insert_at] + block + updated[insert_at:]


@dataclass
class OverlayReport:
    """What happened to one overlay during export."""

    overlay_id: str
    path: str
    written: int
    orphaned: List[str] = field(default_factory=list)
    duration: float = 0.0


@dataclass
class ExportReport:
    """Result of an export."""

    output_path: Path
    overlays: List[OverlayReport] = field(default_factory=list)
    chapters_written: List[str] = field(default_factory=list)

    @property
    def total_duration(self) -> float:
        return sum(o.duration for o in self.overlays)

    @property
    def orphaned(self) -> List[str]:
        return [fid for o in self.overlays for fid in o.orphaned]


class EpubExporter:
    """
    Writes a package back into its archive.

    The package is snapshotted when the exporter is created, so edits
    made afterwards do not leak into a running export.
    """

    def __init__(
        self,
        source,
        archive: EpubArchive,
        precision: Optional[int] = None,
    ):
        if isinstance(source, FragmentModel):
            source = source.snapshot()
        self.package: Package = source
        self.archive = archive
        self.precision = config.clip_precision if precision is None else precision

    def _export_overlay(self, overlay_id: str, fragments: List[Fragment]) -> Optional[OverlayReport]:
        package = self.package
        item = package.manifest.items.get(overlay_id)
        chapter = next((c for c in package.chapters if c.media_overlay == overlay_id), None)
        if item is None or chapter is None:
            logger.warning(f"Overlay {overlay_id} has no chapter; left unchanged")
            return None

        smil_path = package.manifest.archive_path(item.href)
        ids = chapter.content.ids()
        valid = [f for f in fragments if f.text_id and f.text_id in ids]
        orphaned = [f.id for f in fragments if not (f.text_id and f.text_id in ids)]

        duration = max((f.clip_end for f in valid), default=0.0)
        text_ref = relative_href(smil_path, chapter.path)
        seq_id = f"{posixpath.basename(chapter.href)}_overlay"

        self.archive.write_text(
            smil_path, build_smil(valid, text_ref, seq_id, self.precision)
        )
        if orphaned:
            logger.warning(
                f"{overlay_id}: dropped {len(orphaned)} orphaned fragment(s)"
            )
        return OverlayReport(
            overlay_id=overlay_id,
            path=smil_path,
            written=len(valid),
            orphaned=orphaned,
            duration=duration,
        )

    def export(self, output_path: Path) -> ExportReport:
        """
        Write overlays, modified chapters and durations, then save.

        Args:
            output_path: Destination .epub

        Returns:
            ExportReport describing what was written
        """
        output_path = Path(output_path)
        report = ExportReport(output_path=output_path)
        package = self.package

        logger.step("Writing overlays", 1, 3)
        durations: Dict[str, float] = {}
        with logger.create_progress() as progress:
            task = progress.add_task("SMIL", total=len(package.overlays))
            for overlay_id, fragments in package.overlays.items():
                progress.update(task, description=overlay_id)
                overlay = self._export_overlay(overlay_id, fragments)
                if overlay is not None:
                    report.overlays.append(overlay)
                    durations[overlay_id] = overlay.duration
                progress.advance(task)

        logger.step("Writing chapters", 2, 3)
        for chapter in package.chapters:
            if chapter.modified:
                self.archive.write_text(chapter.path, chapter.content.serialize())
                report.chapters_written.append(chapter.id)

        logger.step("Updating package metadata", 3, 3)
        opf_path = package.manifest.opf_path
        if self.archive.exists(opf_path):
            self.archive.write_text(
                opf_path, update_opf_durations(self.archive.read_text(opf_path), durations)
            )
        else:
            logger.warning(f"Package document {opf_path} missing; durations skipped")

        self.archive.save(output_path)
        logger.success(f"Exported {len(report.overlays)} overlay(s) to {output_path}")
        return report


def export_epub(model: FragmentModel, archive: EpubArchive, output_path: Path) -> ExportReport:
    """Convenience wrapper around EpubExporter."""
    return EpubExporter(model, archive).export(output_path)
