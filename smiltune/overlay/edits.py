"""
Fragment Edit Operations

Every operation works on one overlay's fragment list and ends with
FragmentModel.commit(), which restores the sort order and renumbers
fragment order to contiguous integers.
"""

from dataclasses import replace
from typing import Iterable, List, Optional, Tuple

from smiltune.overlay.errors import FragmentReferenceError
from smiltune.overlay.markup import MarkupDocument
from smiltune.overlay.model import Fragment, FragmentModel
from smiltune.utils.config import config

GAP_POLICIES = ("keep", "extend_previous", "extend_next")


def _unique_id(candidate: str, taken: Iterable[str]) -> str:
    taken = set(taken)
    if candidate not in taken:
        return candidate
    n = 2
    while f"{candidate}_{n}" in taken:
        n += 1
    return f"{candidate}_{n}"


class FragmentEditor:
    """
    Mutating operations on a FragmentModel.

    Timing limits come from configuration unless given explicitly:
    min_duration is the shortest clip a fragment may have, epsilon the
    tolerance below which a moved boundary counts as unchanged.
    """

    def __init__(
        self,
        model: FragmentModel,
        min_duration: Optional[float] = None,
        epsilon: Optional[float] = None,
        gap_policy: Optional[str] = None,
    ):
        self.model = model
        self.min_duration = config.min_duration if min_duration is None else min_duration
        self.epsilon = config.epsilon if epsilon is None else epsilon
        self.gap_policy = gap_policy or config.delete_gap_policy
        self.order_step = config.insert_order_step
        if self.gap_policy not in GAP_POLICIES:
            raise ValueError(f"Unknown delete gap policy: {self.gap_policy}")

    def _clamp(self, fragment: Fragment) -> None:
        fragment.clip_begin = max(0.0, fragment.clip_begin)
        if fragment.clip_end - fragment.clip_begin < self.min_duration:
            fragment.clip_end = fragment.clip_begin + self.min_duration

    def _overlay_ids(self, overlay_id: str) -> List[str]:
        return [f.id for f in self.model.fragments(overlay_id)]

    # -- update -----------------------------------------------------------

    def update(
        self,
        fragment_id: str,
        clip_begin: Optional[float] = None,
        clip_end: Optional[float] = None,
        text_src: Optional[str] = None,
        audio_src: Optional[str] = None,
        text: Optional[str] = None,
        cascade: bool = False,
    ) -> List[str]:
        """
        Change a fragment in place.

        Args:
            fragment_id: Fragment to change
            clip_begin: New start, seconds
            clip_end: New end, seconds; clamped to keep the minimum duration
            text_src: New text reference
            audio_src: New audio reference
            text: New cached text
            cascade: Pull the adjacent boundaries along (interactive edits)

        Returns:
            Ids of neighbours rewritten by the cascade
        """
        overlay_id, index = self.model.locate(fragment_id)
        fragments = self.model.fragments(overlay_id)
        fragment = fragments[index]
        previous_begin, previous_end = fragment.clip_begin, fragment.clip_end

        if text_src is not None:
            fragment.text_src = text_src
        if audio_src is not None:
            fragment.audio_src = audio_src
        if text is not None:
            fragment.text = text

        timing_changed = clip_begin is not None or clip_end is not None
        if clip_begin is not None:
            fragment.clip_begin = clip_begin
        if clip_end is not None:
            fragment.clip_end = clip_end
        if timing_changed:
            self._clamp(fragment)

        cascaded = []
        if cascade and timing_changed:
            cascaded = self._cascade(fragments, index, previous_begin, previous_end)

        self.model.commit(overlay_id)
        return cascaded

    def cascade_adjacency(
        self,
        fragment_id: str,
        previous_begin: float,
        previous_end: float,
    ) -> List[str]:
        """
        Keep a fragment contiguous with its immediate neighbours.

        If its end moved past the tolerance the next fragment begins at
        the new end; if its begin moved the previous fragment ends at the
        new begin. Only direct neighbours are touched.

        Returns:
            Ids of rewritten neighbours
        """
        overlay_id, index = self.model.locate(fragment_id)
        cascaded = self._cascade(
            self.model.fragments(overlay_id), index, previous_begin, previous_end
        )
        self.model.commit(overlay_id)
        return cascaded

    def _cascade(
        self,
        fragments: List[Fragment],
        index: int,
        previous_begin: float,
        previous_end: float,
    ) -> List[str]:
        fragment = fragments[index]
        cascaded = []

        if abs(fragment.clip_end - previous_end) > self.epsilon and index < len(fragments) - 1:
            following = fragments[index + 1]
            if following.clip_begin != fragment.clip_end:
                following.clip_begin = fragment.clip_end
                self._clamp(following)
                cascaded.append(following.id)

        if abs(fragment.clip_begin - previous_begin) > self.epsilon and index > 0:
            preceding = fragments[index - 1]
            if preceding.clip_end != fragment.clip_begin:
                preceding.clip_end = fragment.clip_begin
                self._clamp(preceding)
                cascaded.append(preceding.id)

        return cascaded

    # -- delete -----------------------------------------------------------

    def delete(self, fragment_id: str, gap_policy: Optional[str] = None) -> Fragment:
        """
        Remove a fragment.

        The default "keep" policy leaves the gap as silence.
        "extend_previous" stretches the previous fragment over the gap and
        "extend_next" pulls the next fragment back to cover it.
        """
        policy = gap_policy or self.gap_policy
        if policy not in GAP_POLICIES:
            raise ValueError(f"Unknown delete gap policy: {policy}")

        overlay_id, index = self.model.locate(fragment_id)
        fragments = self.model.fragments(overlay_id)
        removed = fragments.pop(index)

        if policy == "extend_previous" and index > 0:
            fragments[index - 1].clip_end = max(fragments[index - 1].clip_end, removed.clip_end)
        elif policy == "extend_next" and index < len(fragments):
            fragments[index].clip_begin = min(fragments[index].clip_begin, removed.clip_begin)

        self.model.commit(overlay_id)
        return removed

    # -- split ------------------------------------------------------------

    def split_by_time(self, fragment_id: str, split_time: float) -> Tuple[Fragment, Fragment]:
        """
        Cut a fragment in two at an audio time.

        Both halves keep the parent's text and audio references; the
        first ends exactly where the second begins.
        """
        overlay_id, index = self.model.locate(fragment_id)
        fragments = self.model.fragments(overlay_id)
        parent = fragments[index]

        if not parent.clip_begin < split_time < parent.clip_end:
            raise ValueError(
                f"Split time {split_time:.3f} outside "
                f"({parent.clip_begin:.3f}, {parent.clip_end:.3f})"
            )
        if (split_time - parent.clip_begin < self.min_duration
                or parent.clip_end - split_time < self.min_duration):
            raise ValueError(
                f"Split at {split_time:.3f} leaves a part shorter than {self.min_duration}s"
            )

        first, second = self._children(overlay_id, parent, split_time)
        fragments[index:index + 1] = [first, second]
        self.model.commit(overlay_id)
        return first, second

    def _children(
        self,
        overlay_id: str,
        parent: Fragment,
        split_time: float,
    ) -> Tuple[Fragment, Fragment]:
        taken = set(self._overlay_ids(overlay_id))
        first_id = _unique_id(f"{parent.id}_part1", taken)
        taken.add(first_id)
        second_id = _unique_id(f"{parent.id}_part2", taken)

        first = replace(parent, id=first_id, clip_end=split_time)
        second = replace(
            parent,
            id=second_id,
            clip_begin=split_time,
            order=parent.order + self.order_step,
        )
        return first, second

    def split_by_text(self, fragment_id: str, char_offset: int) -> Tuple[Fragment, Fragment]:
        """
        Split a fragment's text element and its audio clip together.

        The audio is divided proportionally to the character offset. The
        referenced element is replaced in the chapter markup by two
        elements with fresh ids, which the new fragments point at.

        Args:
            fragment_id: Fragment to split
            char_offset: Offset into the element's flattened text

        Returns:
            (first, second) new fragments
        """
        overlay_id, index = self.model.locate(fragment_id)
        fragments = self.model.fragments(overlay_id)
        parent = fragments[index]

        chapter = self.model.chapter_for_overlay(overlay_id)
        text_id = parent.text_id
        element = chapter.content.find_by_id(text_id) if chapter and text_id else None
        if element is None:
            raise FragmentReferenceError(
                f"Fragment {fragment_id} references missing element {parent.text_src!r}"
            )

        if parent.duration < 2 * self.min_duration:
            raise ValueError(f"Fragment {fragment_id} is too short to split")

        content: MarkupDocument = chapter.content
        total = len(content.text_of(text_id) or "")
        if char_offset < 0 or char_offset > total:
            raise ValueError(f"Offset {char_offset} outside 0..{total}")

        split_time = parent.clip_begin + parent.duration * (char_offset / (total or 1))
        split_time = min(
            max(split_time, parent.clip_begin + self.min_duration),
            parent.clip_end - self.min_duration,
        )

        result = content.split_element(text_id, char_offset)
        chapter.modified = True

        first, second = self._children(overlay_id, parent, split_time)
        first.text_src = f"{parent.text_path}#{result.first_id}"
        first.text = result.first_text
        second.text_src = f"{parent.text_path}#{result.second_id}"
        second.text = result.second_text

        fragments[index:index + 1] = [first, second]
        self.model.commit(overlay_id)
        return first, second

    # -- add --------------------------------------------------------------

    def add(self, after_id: str, **fields) -> Fragment:
        """
        Insert a new fragment right after another one.

        Defaults to a clip of the configured length starting where the
        anchor ends, on the same audio and text reference. Keyword fields
        override defaults.
        """
        overlay_id, index = self.model.locate(after_id)
        fragments = self.model.fragments(overlay_id)
        anchor = fragments[index]

        clip_begin = fields.pop("clip_begin", anchor.clip_end)
        text_src = fields.pop("text_src", anchor.text_src)
        fragment = Fragment(
            id=fields.pop("id", None) or _unique_id(
                f"fragment_{len(fragments) + 1}", self._overlay_ids(overlay_id)
            ),
            text_src=text_src,
            audio_src=fields.pop("audio_src", anchor.audio_src),
            clip_begin=clip_begin,
            clip_end=fields.pop("clip_end", clip_begin + config.default_fragment_duration),
            text=fields.pop("text", anchor.text if text_src == anchor.text_src else ""),
            order=anchor.order + self.order_step,
        )
        if fields:
            raise TypeError(f"Unknown fragment fields: {', '.join(sorted(fields))}")
        if fragment.id in self._overlay_ids(overlay_id):
            raise ValueError(f"Fragment id already in use: {fragment.id}")

        self._clamp(fragment)
        fragments.insert(index + 1, fragment)
        self.model.commit(overlay_id)
        return fragment

    # -- global offset ----------------------------------------------------

    def apply_time_offset(self, overlay_id: str, from_time: float, offset: float) -> List[str]:
        """
        Shift part of an overlay's timeline.

        Fragments starting at or after from_time move by offset. The
        fragment straddling from_time only has its end moved. Earlier
        fragments are untouched.

        Returns:
            Ids of fragments that changed
        """
        changed = []
        for fragment in self.model.fragments(overlay_id):
            if fragment.clip_begin >= from_time:
                fragment.clip_begin = max(0.0, fragment.clip_begin + offset)
                fragment.clip_end = max(
                    fragment.clip_begin + self.min_duration,
                    fragment.clip_end + offset,
                )
                changed.append(fragment.id)
            elif fragment.clip_end > from_time:
                fragment.clip_end = max(
                    fragment.clip_begin + self.min_duration,
                    fragment.clip_end + offset,
                )
                changed.append(fragment.id)

        self.model.commit(overlay_id)
        return changed

    # -- markup -----------------------------------------------------------

    def replace_chapter_markup(self, chapter_id: str, markup: str) -> List[Fragment]:
        """
        Swap in hand-edited chapter markup.

        Fragments are left alone; those whose element disappeared become
        orphans and are dropped on export.

        Returns:
            Fragments orphaned by the new markup
        """
        chapter = self.model.chapter(chapter_id)
        if chapter is None:
            raise KeyError(f"Unknown chapter: {chapter_id}")

        chapter.content = MarkupDocument(markup)
        chapter.modified = True
        self.model.version += 1

        if not chapter.media_overlay:
            return []
        return self.model.orphaned_fragments(chapter.media_overlay)
