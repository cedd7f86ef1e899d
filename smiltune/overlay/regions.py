"""
Waveform Region Synchronization

Mirrors an overlay's fragments as transient regions of a visual
timeline. Dragging only moves regions (propose); releasing writes to
the model once (commit), cascading into neighbouring fragments.
Playback ticks auto-select the fragment under the play head.
"""

import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from smiltune.overlay.edits import FragmentEditor
from smiltune.overlay.model import Fragment
from smiltune.utils.config import config


@dataclass
class Region:
    """Visual counterpart of a fragment."""

    id: str
    start: float
    end: float
    selected: bool = False
    dragging: bool = False


class RegionSync:
    """
    Two-phase bridge between regions and the fragment model.

    Args:
        editor: Editor whose model holds the overlay
        overlay_id: Overlay shown on the timeline
        clock: Monotonic time source in seconds
        suppress_window: Seconds auto-selection stays off after select()
        epsilon: Boundary tolerance for playback matching
    """

    def __init__(
        self,
        editor: FragmentEditor,
        overlay_id: str,
        clock: Callable[[], float] = time.monotonic,
        suppress_window: Optional[float] = None,
        epsilon: Optional[float] = None,
    ):
        self.editor = editor
        self.overlay_id = overlay_id
        self.clock = clock
        self.suppress_window = (
            config.auto_select_suppress if suppress_window is None else suppress_window
        )
        self.epsilon = editor.epsilon if epsilon is None else epsilon
        self.regions: Dict[str, Region] = {}
        self.selected_id: Optional[str] = None
        self.position = 0.0
        self._suppress_until = 0.0
        self.refresh()

    @property
    def fragments(self) -> List[Fragment]:
        return self.editor.model.fragments(self.overlay_id)

    def refresh(self) -> None:
        """Add, update and drop regions to match the current fragments."""
        fragments = self.fragments
        live = {f.id for f in fragments}
        for region_id in list(self.regions):
            if region_id not in live:
                del self.regions[region_id]

        for fragment in fragments:
            region = self.regions.get(fragment.id)
            if region is None:
                region = Region(id=fragment.id, start=fragment.clip_begin, end=fragment.clip_end)
                self.regions[fragment.id] = region
            elif not region.dragging:
                region.start = fragment.clip_begin
                region.end = fragment.clip_end
            region.selected = fragment.id == self.selected_id

        if self.selected_id not in live:
            self.selected_id = None

    def _paint(self, fragment_id: str) -> None:
        fragment = self.editor.model.fragment(fragment_id)
        region = self.regions.get(fragment_id)
        if region is None:
            self.regions[fragment_id] = Region(
                id=fragment_id, start=fragment.clip_begin, end=fragment.clip_end
            )
        else:
            region.start = fragment.clip_begin
            region.end = fragment.clip_end

    # -- drag protocol ----------------------------------------------------

    def propose(self, region_id: str, start: float, end: float) -> Region:
        """Move a region during a drag without touching the model."""
        region = self.regions.get(region_id)
        if region is None:
            raise KeyError(f"Unknown region: {region_id}")
        region.start = start
        region.end = end
        region.dragging = True
        return region

    def commit(self, region_id: str, start: float, end: float) -> List[str]:
        """
        Write a region's final position to the model.

        Called once on drag release, or for any programmatic change.

        Returns:
            Ids of repainted regions, the committed one first
        """
        cascaded = self.editor.update(region_id, clip_begin=start, clip_end=end, cascade=True)
        region = self.regions.get(region_id)
        if region is not None:
            region.dragging = False

        repainted = [region_id] + cascaded
        for fragment_id in repainted:
            self._paint(fragment_id)
        return repainted

    # -- selection --------------------------------------------------------

    def _set_selected(self, fragment_id: Optional[str]) -> None:
        self.selected_id = fragment_id
        for region in self.regions.values():
            region.selected = region.id == fragment_id

    def select(self, fragment_id: str) -> Fragment:
        """Manual selection; seeks to the fragment and pauses auto-select."""
        fragment = self.editor.model.fragment(fragment_id)
        self._set_selected(fragment_id)
        self._suppress_until = self.clock() + self.suppress_window
        if abs(self.position - fragment.clip_begin) > self.epsilon:
            self.position = fragment.clip_begin
        return fragment

    def clear_selection(self) -> None:
        self._set_selected(None)

    @property
    def selected(self) -> Optional[Fragment]:
        if self.selected_id is None:
            return None
        for fragment in self.fragments:
            if fragment.id == self.selected_id:
                return fragment
        return None

    def seek_position(self) -> float:
        """Where playback should start: the selection's begin, else the play head."""
        fragment = self.selected
        return fragment.clip_begin if fragment is not None else self.position

    def fragment_at(self, position: float) -> Optional[Fragment]:
        for fragment in self.fragments:
            if fragment.contains(position, self.epsilon):
                return fragment
        return None

    def on_time_update(self, position: float) -> Optional[Fragment]:
        """
        Follow the play head.

        Returns:
            The auto-selected fragment, or None when nothing changed
        """
        self.position = position
        if self.clock() < self._suppress_until:
            return None
        fragment = self.fragment_at(position)
        if fragment is None or fragment.id == self.selected_id:
            return None
        self._set_selected(fragment.id)
        return fragment

    def _step(self, delta: int) -> Optional[Fragment]:
        fragments = self.fragments
        if self.selected_id is None or not fragments:
            return None
        ids = [f.id for f in fragments]
        if self.selected_id not in ids:
            return None
        target = ids.index(self.selected_id) + delta
        if not 0 <= target < len(fragments):
            return None
        return self.select(fragments[target].id)

    def select_previous(self) -> Optional[Fragment]:
        return self._step(-1)

    def select_next(self) -> Optional[Fragment]:
        return self._step(1)
