"""
Editor Session Module

Orchestrates one open talking book: loading, chapter and fragment
selection, edit operations and export.

Features:
- Restores the last selected chapter from the preference store
- Keeps the selected fragment in step with edits
- Non-fatal audio problems degrade to "no waveform" instead of failing
- Async load/export tasks for event-loop hosts
"""

import asyncio
from pathlib import Path
from typing import Awaitable, List, Optional, Tuple

from smiltune.overlay.edits import FragmentEditor
from smiltune.overlay.epub_reader import EpubArchive, EpubReader
from smiltune.overlay.errors import AudioDecodeError, AudioResolutionError, EpubFormatError
from smiltune.overlay.model import AudioFile, Chapter, Fragment, FragmentModel
from smiltune.overlay.regions import RegionSync
from smiltune.overlay.smil_writer import EpubExporter, ExportReport
from smiltune.overlay.waveform import Waveform, load_waveform
from smiltune.utils import logger
from smiltune.utils.preferences import PreferenceStore

LAST_CHAPTER_KEY = "smiltune:lastSelectedChapter"


class EditorSession:
    """
    A single-writer editing session over one EPUB.

    Args:
        preferences: Store used to remember the selected chapter
    """

    def __init__(self, preferences: Optional[PreferenceStore] = None):
        self.preferences = preferences or PreferenceStore()
        self.source_path: Optional[Path] = None
        self.archive: Optional[EpubArchive] = None
        self.model: Optional[FragmentModel] = None
        self.editor: Optional[FragmentEditor] = None
        self.error: Optional[str] = None
        self.selected_fragment_id: Optional[str] = None
        self._selected_chapter_id: Optional[str] = None
        self._regions: Optional[RegionSync] = None

    # -- loading ----------------------------------------------------------

    def open(self, path: Path) -> FragmentModel:
        """
        Load an EPUB.

        On failure nothing from the new file is kept and the error is
        re-raised after being recorded.
        """
        path = Path(path)
        logger.header(f"Opening: {path.name}")
        self.error = None

        try:
            logger.step("Reading archive", 1, 2)
            archive = EpubArchive.open(path)
            logger.step("Resolving package", 2, 2)
            package = EpubReader(archive).parse()
        except (EpubFormatError, OSError) as e:
            self.error = str(e)
            logger.error(f"Failed to open {path.name}: {e}")
            raise

        self.source_path = path
        self.archive = archive
        self.model = FragmentModel(package)
        self.editor = FragmentEditor(self.model)
        self.selected_fragment_id = None
        self._selected_chapter_id = None
        self._regions = None
        self._restore_chapter()

        fragment_count = sum(len(f) for f in package.overlays.values())
        logger.success(
            f"{package.title}: {len(package.chapters)} chapters, "
            f"{len(package.overlays)} overlays, {fragment_count} fragments"
        )
        return self.model

    async def open_async(self, path: Path) -> FragmentModel:
        """Load in a worker thread; the returned awaitable resolves or fails once."""
        return await asyncio.to_thread(self.open, path)

    def _restore_chapter(self) -> None:
        chapters = self.model.chapters
        last = self.preferences.get(LAST_CHAPTER_KEY)
        if last and self.model.chapter(last) is not None:
            self.select_chapter(last)
            return
        with_overlay = next((c for c in chapters if c.media_overlay), None)
        if with_overlay is not None:
            self.select_chapter(with_overlay.id)
        elif chapters:
            self.select_chapter(chapters[0].id)

    def _require_model(self) -> FragmentModel:
        if self.model is None:
            raise RuntimeError("No EPUB loaded")
        return self.model

    # -- selection --------------------------------------------------------

    @property
    def selected_chapter_id(self) -> Optional[str]:
        return self._selected_chapter_id

    def select_chapter(self, chapter_id: str) -> Chapter:
        chapter = self._require_model().chapter(chapter_id)
        if chapter is None:
            raise KeyError(f"Unknown chapter: {chapter_id}")
        if chapter_id != self._selected_chapter_id:
            self._selected_chapter_id = chapter_id
            self.selected_fragment_id = None
            self._regions = None
            self.preferences.set(LAST_CHAPTER_KEY, chapter_id)
        return chapter

    def current_chapter(self) -> Optional[Chapter]:
        if self.model is None or self._selected_chapter_id is None:
            return None
        return self.model.chapter(self._selected_chapter_id)

    def current_fragments(self) -> List[Fragment]:
        chapter = self.current_chapter()
        if chapter is None or not chapter.media_overlay:
            return []
        return self.model.fragments(chapter.media_overlay)

    def selected_fragment(self) -> Optional[Fragment]:
        if self.selected_fragment_id is None:
            return None
        return next(
            (f for f in self.current_fragments() if f.id == self.selected_fragment_id),
            None,
        )

    def select_fragment(self, fragment_id: Optional[str]) -> Optional[Fragment]:
        self.selected_fragment_id = fragment_id
        regions = self.regions()
        if regions is not None:
            if fragment_id is None:
                regions.clear_selection()
            else:
                regions.select(fragment_id)
        return self.selected_fragment()

    def current_audio(self) -> Optional[AudioFile]:
        """
        Audio for the selected chapter.

        A missing resource is logged and reported as None; the chapter
        stays editable.
        """
        chapter = self.current_chapter()
        if chapter is None or not chapter.media_overlay:
            return None
        try:
            return self._resolve_audio(chapter)
        except AudioResolutionError as e:
            logger.warning(str(e))
            return None

    def _resolve_audio(self, chapter: Chapter) -> Optional[AudioFile]:
        fragments = self.model.fragments(chapter.media_overlay)
        if not fragments:
            return None
        audio = self.model.audio_for_overlay(chapter.media_overlay)
        if audio is None:
            raise AudioResolutionError(
                f"Audio file not found for {chapter.id}: {fragments[0].audio_src}"
            )
        return audio

    def current_waveform(self, bins: Optional[int] = None) -> Optional[Waveform]:
        audio = self.current_audio()
        if audio is None:
            return None
        try:
            return load_waveform(audio, bins)
        except AudioDecodeError as e:
            logger.warning(str(e))
            return None

    def regions(self) -> Optional[RegionSync]:
        """Region timeline for the selected chapter, rebuilt on chapter change."""
        chapter = self.current_chapter()
        if chapter is None or not chapter.media_overlay:
            return None
        if self._regions is None or self._regions.overlay_id != chapter.media_overlay:
            self._regions = RegionSync(self.editor, chapter.media_overlay)
        return self._regions

    def _refresh_regions(self) -> None:
        if self._regions is not None:
            self._regions.refresh()

    # -- edits ------------------------------------------------------------

    def update_fragment(self, fragment_id: str, **changes) -> List[str]:
        self._require_model()
        cascaded = self.editor.update(fragment_id, **changes)
        self._refresh_regions()
        return cascaded

    def delete_fragment(self, fragment_id: str, gap_policy: Optional[str] = None) -> Fragment:
        self._require_model()
        removed = self.editor.delete(fragment_id, gap_policy)
        if self.selected_fragment_id == fragment_id:
            self.selected_fragment_id = None
        self._refresh_regions()
        return removed

    def split_fragment(self, fragment_id: str, split_time: float) -> Tuple[Fragment, Fragment]:
        self._require_model()
        children = self.editor.split_by_time(fragment_id, split_time)
        if self.selected_fragment_id == fragment_id:
            self.selected_fragment_id = children[0].id
        self._refresh_regions()
        return children

    def split_fragment_by_text(self, fragment_id: str, char_offset: int) -> Tuple[Fragment, Fragment]:
        self._require_model()
        children = self.editor.split_by_text(fragment_id, char_offset)
        self.selected_fragment_id = children[0].id
        self._refresh_regions()
        return children

    def add_fragment(self, after_id: str, **fields) -> Fragment:
        self._require_model()
        fragment = self.editor.add(after_id, **fields)
        self._refresh_regions()
        return fragment

    def apply_time_offset(self, from_time: float, offset: float) -> List[str]:
        self._require_model()
        chapter = self.current_chapter()
        if chapter is None or not chapter.media_overlay:
            return []
        changed = self.editor.apply_time_offset(chapter.media_overlay, from_time, offset)
        self._refresh_regions()
        return changed

    def edit_chapter_markup(self, markup: str) -> List[Fragment]:
        chapter = self.current_chapter()
        if chapter is None:
            raise RuntimeError("No chapter selected")
        orphans = self.editor.replace_chapter_markup(chapter.id, markup)
        if orphans:
            logger.warning(f"{len(orphans)} fragment(s) no longer match the markup")
        return orphans

    # -- export -----------------------------------------------------------

    def export(self, output_path: Path) -> ExportReport:
        model = self._require_model()
        logger.header(f"Exporting: {Path(output_path).name}")
        return EpubExporter(model, self.archive).export(output_path)

    def export_async(self, output_path: Path) -> Awaitable[ExportReport]:
        """
        Export in a worker thread.

        The model is snapshotted when this is called, not when the
        returned awaitable first runs.
        """
        exporter = EpubExporter(self._require_model(), self.archive)
        return asyncio.to_thread(exporter.export, output_path)
