#!/usr/bin/env python3
"""
SMILTune - Main CLI

Fine-tune the timing of EPUB 3 media overlays from the command line.

Features:
- Inspect chapters, overlays and orphaned fragments
- Retime, split, add and delete fragments
- Shift a whole chapter timeline from a given point
- Regenerate SMIL files and media:duration metadata on export
- Timing map JSON reports for review
"""

import sys
from pathlib import Path
from typing import Optional

import click

from smiltune import __version__
from smiltune.overlay.errors import OverlayError
from smiltune.overlay.session import EditorSession
from smiltune.overlay.timecode import format_duration, parse_clock_value
from smiltune.overlay.timing_map import build_timing_map
from smiltune.utils import logger
from smiltune.utils.config import config
from smiltune.utils.preferences import PreferenceStore


def _open(input_file: str) -> EditorSession:
    session = EditorSession(PreferenceStore(config.get_path("preferences")))
    try:
        session.open(Path(input_file))
    except (OverlayError, OSError):
        sys.exit(1)
    return session


def _output_path(input_file: str, output: Optional[str]) -> Path:
    if output:
        return Path(output)
    source = Path(input_file)
    suffix = config.get("export", "suffix", default="_synced")
    return source.with_name(f"{source.stem}{suffix}{source.suffix}")


def _save(session: EditorSession, input_file: str, output: Optional[str]) -> None:
    output_path = _output_path(input_file, output)
    report = session.export(output_path)
    if report.orphaned:
        logger.warning(f"Orphaned fragments dropped: {', '.join(report.orphaned)}")
    logger.info(f"Total duration: {format_duration(report.total_duration)}")


def _run(action):
    """Run an edit, reporting refused operations once."""
    try:
        return action()
    except (OverlayError, KeyError, ValueError) as e:
        logger.error(str(e))
        sys.exit(1)


def _select_for_fragment(session: EditorSession, fragment_id: str) -> None:
    overlay_id, _ = _run(lambda: session.model.locate(fragment_id))
    chapter = session.model.chapter_for_overlay(overlay_id)
    if chapter is not None:
        session.select_chapter(chapter.id)


output_option = click.option(
    "-o", "--output",
    type=click.Path(),
    help="Output EPUB path (default: <input>_synced.epub)",
)


@click.group()
@click.version_option(version=__version__)
def cli():
    """
    SMILTune

    Adjust the alignment between narration and text in EPUB 3
    talking books without re-encoding audio.
    """
    pass


@cli.command()
@click.argument("input_file", type=click.Path(exists=True))
def inspect(input_file: str):
    """
    List chapters with their overlays and fragment counts.
    """
    session = _open(input_file)
    model = session.model

    logger.console.print(f"\n[bold]{model.package.title}[/bold]\n")
    for chapter in model.chapters:
        overlay = chapter.media_overlay or "-"
        fragments = model.fragments_for_chapter(chapter.id)
        orphans = model.orphaned_fragments(chapter.media_overlay) if chapter.media_overlay else []
        audio = model.audio_for_overlay(chapter.media_overlay) if chapter.media_overlay else None
        audio_info = f"{audio.src} ({format_duration(audio.duration)})" if audio else "no audio"
        logger.console.print(
            f"  {chapter.id:<16} {chapter.title[:40]:<40} "
            f"overlay={overlay:<12} {len(fragments):4} fragments "
            f"{len(orphans):3} orphaned  {audio_info}"
        )


@cli.command()
@click.argument("input_file", type=click.Path(exists=True))
@click.argument("chapter_id")
def fragments(input_file: str, chapter_id: str):
    """
    Show the fragment timeline of one chapter.
    """
    session = _open(input_file)
    chapter = _run(lambda: session.select_chapter(chapter_id))
    orphaned = set()
    if chapter.media_overlay:
        orphaned = {f.id for f in session.model.orphaned_fragments(chapter.media_overlay)}

    rows = [
        (f.id, format_duration(f.clip_begin), format_duration(f.clip_end), f.text)
        for f in session.current_fragments()
    ]
    logger.console.print(
        logger.timeline_table(f"{chapter.title} ({chapter.id})", rows, sorted(orphaned))
    )


@cli.command()
@click.argument("input_file", type=click.Path(exists=True))
@click.argument("fragment_id")
@click.option("--begin", default=None, help="New clipBegin (e.g. 12.5, 12.5s, 0:00:12.500)")
@click.option("--end", default=None, help="New clipEnd")
@click.option("--cascade/--no-cascade", default=True, help="Move adjacent boundaries along")
@output_option
def retime(
    input_file: str,
    fragment_id: str,
    begin: Optional[str],
    end: Optional[str],
    cascade: bool,
    output: Optional[str],
):
    """
    Change a fragment's clip range.
    """
    session = _open(input_file)
    changes = {"cascade": cascade}
    if begin is not None:
        changes["clip_begin"] = parse_clock_value(begin)
    if end is not None:
        changes["clip_end"] = parse_clock_value(end)

    cascaded = _run(lambda: session.update_fragment(fragment_id, **changes))
    if cascaded:
        logger.info(f"Adjusted neighbours: {', '.join(cascaded)}")
    _save(session, input_file, output)


@cli.command()
@click.argument("input_file", type=click.Path(exists=True))
@click.argument("fragment_id")
@click.option("--at", "at_time", default=None, help="Split at this audio time")
@click.option("--text-offset", type=int, default=None, help="Split the text at this character")
@output_option
def split(
    input_file: str,
    fragment_id: str,
    at_time: Optional[str],
    text_offset: Optional[int],
    output: Optional[str],
):
    """
    Split a fragment by audio time or by text position.
    """
    if (at_time is None) == (text_offset is None):
        raise click.UsageError("Give exactly one of --at or --text-offset")

    session = _open(input_file)
    _select_for_fragment(session, fragment_id)
    if text_offset is not None:
        first, second = _run(lambda: session.split_fragment_by_text(fragment_id, text_offset))
    else:
        first, second = _run(lambda: session.split_fragment(fragment_id, parse_clock_value(at_time)))

    logger.clip(first.id, first.clip_begin, first.clip_end)
    logger.clip(second.id, second.clip_begin, second.clip_end)
    _save(session, input_file, output)


@cli.command()
@click.argument("input_file", type=click.Path(exists=True))
@click.argument("fragment_id")
@click.option(
    "--gap-policy",
    type=click.Choice(["keep", "extend_previous", "extend_next"]),
    default=None,
    help=f"What to do with the gap (default: {config.delete_gap_policy})",
)
@output_option
def delete(input_file: str, fragment_id: str, gap_policy: Optional[str], output: Optional[str]):
    """
    Delete a fragment.
    """
    session = _open(input_file)
    removed = _run(lambda: session.delete_fragment(fragment_id, gap_policy))
    logger.clip(removed.id, removed.clip_begin, removed.clip_end, "deleted")
    _save(session, input_file, output)


@cli.command()
@click.argument("input_file", type=click.Path(exists=True))
@click.argument("after_id")
@click.option("--begin", default=None, help="clipBegin (default: end of AFTER_ID)")
@click.option("--end", default=None, help="clipEnd (default: begin + 1s)")
@click.option("--text-src", default=None, help="Text reference (default: same as AFTER_ID)")
@output_option
def add(
    input_file: str,
    after_id: str,
    begin: Optional[str],
    end: Optional[str],
    text_src: Optional[str],
    output: Optional[str],
):
    """
    Insert a fragment after AFTER_ID.
    """
    session = _open(input_file)
    fields = {}
    if begin is not None:
        fields["clip_begin"] = parse_clock_value(begin)
    if end is not None:
        fields["clip_end"] = parse_clock_value(end)
    if text_src is not None:
        fields["text_src"] = text_src

    fragment = _run(lambda: session.add_fragment(after_id, **fields))
    logger.clip(fragment.id, fragment.clip_begin, fragment.clip_end, "added")
    _save(session, input_file, output)


@cli.command()
@click.argument("input_file", type=click.Path(exists=True))
@click.argument("chapter_id")
@click.option("--from", "from_time", required=True, help="Shift fragments starting here")
@click.option("--by", "offset", required=True, type=float, help="Seconds to shift (may be negative)")
@output_option
def offset(input_file: str, chapter_id: str, from_time: str, offset: float, output: Optional[str]):
    """
    Shift a chapter's timeline from a point onward.
    """
    session = _open(input_file)
    _run(lambda: session.select_chapter(chapter_id))
    changed = session.apply_time_offset(parse_clock_value(from_time), offset)
    logger.info(f"Shifted {len(changed)} fragment(s) by {offset:+.3f}s")
    _save(session, input_file, output)


@cli.command()
@click.argument("input_file", type=click.Path(exists=True))
@click.option("-o", "--output", type=click.Path(), help="Output JSON path")
def timing(input_file: str, output: Optional[str]):
    """
    Write a timing map JSON of every chapter.
    """
    session = _open(input_file)
    timing_map = build_timing_map(session.model)
    if output:
        output_path = Path(output)
    else:
        output_path = config.get_path("output") / f"{Path(input_file).stem}_timing.json"
    timing_map.save(output_path)
    logger.info(f"Duration: {format_duration(timing_map.total_duration)}")


@cli.command()
@click.argument("input_file", type=click.Path(exists=True))
@output_option
def export(input_file: str, output: Optional[str]):
    """
    Rewrite overlays and durations without other edits.
    """
    session = _open(input_file)
    _save(session, input_file, output)


@cli.command()
def info():
    """
    Show configuration.
    """
    logger.header("SMILTune")

    logger.console.print("[bold]Paths:[/bold]")
    logger.console.print(f"  Project root: {config.project_root}")
    logger.console.print(f"  Output:       {config.get_path('output')}")
    logger.console.print(f"  Preferences:  {config.get_path('preferences')}")

    logger.console.print("\n[bold]Timing:[/bold]")
    logger.console.print(f"  Minimum duration:  {config.min_duration}s")
    logger.console.print(f"  Boundary epsilon:  {config.epsilon}s")
    logger.console.print(f"  New fragment:      {config.default_fragment_duration}s")
    logger.console.print(f"  Delete gap policy: {config.delete_gap_policy}")
    logger.console.print(f"  Clip precision:    {config.clip_precision} decimals")


def main():
    """Main entry point."""
    cli()


if __name__ == "__main__":
    main()
