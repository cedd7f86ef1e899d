"""
Timing Map Module

JSON report of a package's current timeline: one entry per fragment,
grouped by chapter. Useful for review and for web readers.
"""

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List

from smiltune.overlay.model import FragmentModel
from smiltune.utils import logger


@dataclass
class TimingEntry:
    """One fragment as it appears in the report."""

    id: str
    start: float  # clipBegin, seconds
    end: float  # clipEnd, seconds
    text: str
    text_src: str = ""
    orphaned: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "start": round(self.start, 3),
            "end": round(self.end, 3),
            "text": self.text,
            "textSrc": self.text_src,
            "orphaned": self.orphaned,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TimingEntry":
        return cls(
            id=data["id"],
            start=data["start"],
            end=data["end"],
            text=data.get("text", ""),
            text_src=data.get("textSrc", ""),
            orphaned=data.get("orphaned", False),
        )


@dataclass
class ChapterTiming:
    """Timeline of one chapter's overlay."""

    chapter_id: str
    title: str
    overlay_id: str
    audio_file: str  # OPF-relative href
    duration: float  # max(end) over exported entries
    entries: List[TimingEntry] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "chapterId": self.chapter_id,
            "title": self.title,
            "overlayId": self.overlay_id,
            "audioFile": self.audio_file,
            "duration": round(self.duration, 3),
            "entries": [e.to_dict() for e in self.entries],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChapterTiming":
        return cls(
            chapter_id=data["chapterId"],
            title=data["title"],
            overlay_id=data.get("overlayId", ""),
            audio_file=data.get("audioFile", ""),
            duration=data.get("duration", 0.0),
            entries=[TimingEntry.from_dict(e) for e in data.get("entries", [])],
        )


@dataclass
class BookTimingMap:
    """Timing report for a whole package."""

    title: str
    chapters: List[ChapterTiming] = field(default_factory=list)
    version: str = "1.0"

    @property
    def total_duration(self) -> float:
        return sum(ch.duration for ch in self.chapters)

    def to_dict(self) -> Dict[str, Any]:
        """Serializable form, camelCase keys."""
        return {
            "version": self.version,
            "title": self.title,
            "totalDuration": round(self.total_duration, 3),
            "chapterCount": len(self.chapters),
            "chapters": [ch.to_dict() for ch in self.chapters],
        }

    def save(self, output_path: Path) -> Path:
        """Write the report as .json, creating parent folders."""
        output_path = Path(output_path).with_suffix(".json")
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_text(
            json.dumps(self.to_dict(), indent=2, ensure_ascii=False), encoding="utf-8"
        )
        logger.success(f"Saved timing map: {output_path}")
        return output_path

    @classmethod
    def load(cls, path: Path) -> "BookTimingMap":
        data = json.loads(Path(path).read_text(encoding="utf-8"))
        return cls(
            title=data["title"],
            chapters=[ChapterTiming.from_dict(ch) for ch in data.get("chapters", [])],
            version=data.get("version", "1.0"),
        )


def build_timing_map(model: FragmentModel) -> BookTimingMap:
    """Collect the timeline of every chapter that has an overlay."""
    book_map = BookTimingMap(title=model.package.title)

    for chapter in model.chapters:
        if not chapter.media_overlay:
            continue
        fragments = model.fragments(chapter.media_overlay)
        orphaned = {f.id for f in model.orphaned_fragments(chapter.media_overlay)}
        audio = model.audio_for_overlay(chapter.media_overlay)

        book_map.chapters.append(ChapterTiming(
            chapter_id=chapter.id,
            title=chapter.title,
            overlay_id=chapter.media_overlay,
            audio_file=audio.src if audio else "",
            duration=max(
                (f.clip_end for f in fragments if f.id not in orphaned), default=0.0
            ),
            entries=[
                TimingEntry(
                    id=f.id,
                    start=f.clip_begin,
                    end=f.clip_end,
                    text=f.text,
                    text_src=f.text_src,
                    orphaned=f.id in orphaned,
                )
                for f in fragments
            ],
        ))

    return book_map
