"""Command-line interface for Score Simplifier.

Provides commands for:
- simplify: Simplify a MusicXML score to a level 1-5
- analyze: Show locks, rhythm patterns and voice separation
- levels: Describe the simplification levels
- info: Show score metadata
"""

import logging
import time
from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

app = typer.Typer(
    name="score-simplifier",
    help="Graded simplification of MusicXML scores",
    rich_markup_mode="markdown",
)
console = Console()
err_console = Console(stderr=True)


@dataclass
class StageTimings:
    """Track timing of pipeline stages."""

    stages: Dict[str, float] = field(default_factory=dict)
    _current_stage: Optional[str] = field(default=None, repr=False)
    _start_time: float = field(default=0.0, repr=False)

    def start(self, stage: str) -> None:
        self._current_stage = stage
        self._start_time = time.perf_counter()

    def stop(self) -> float:
        """Stop timing the current stage, return duration."""
        if self._current_stage is None:
            return 0.0
        duration = time.perf_counter() - self._start_time
        self.stages[self._current_stage] = duration
        self._current_stage = None
        return duration

    @property
    def total_time(self) -> float:
        return sum(self.stages.values())

    def print_summary(self) -> None:
        console.print("\n[bold]Timing Summary:[/bold]")
        for stage, duration in self.stages.items():
            console.print(f"  {stage}: {duration * 1000:.1f}ms")
        console.print(f"  [bold]Total: {self.total_time * 1000:.1f}ms[/bold]")

    def to_dict(self) -> Dict[str, Any]:
        return {"stages": self.stages, "total_time": self.total_time}


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=err_console, show_path=False)],
        force=True,
    )


def _load_score(input_file: Path):
    """Parse a score file, exiting with a message on unreadable input."""
    from .core import FormatError
    from .input import MusicXMLParser

    if not input_file.exists():
        console.print(f"[red]Error: File not found: {input_file}[/red]")
        raise typer.Exit(1)

    parser = MusicXMLParser()
    try:
        raw = parser.loader.load(input_file)
        return raw, parser.parse(raw)
    except (FormatError, ValueError) as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)


@app.command()
def simplify(
    input_file: Path = typer.Argument(..., help="Input score (.xml, .musicxml or .mxl)"),
    output: Optional[Path] = typer.Option(
        None, "-o", "--output", help="Output score path"
    ),
    level: int = typer.Option(
        3, "-l", "--level", min=1, max=5, help="Simplification level (1 = sparsest, 5 = near original)"
    ),
    soprano_level: Optional[int] = typer.Option(
        None, "--soprano-level", help="Grand staff: soprano sub-level (clamped to the level's range)"
    ),
    bass_level: Optional[int] = typer.Option(
        None, "--bass-level", help="Grand staff: bass sub-level (clamped to the level's range)"
    ),
    mxl: Optional[bool] = typer.Option(
        None, "--mxl/--xml", help="Write compressed .mxl or bare XML (default: follow output/input)"
    ),
    midi: Optional[Path] = typer.Option(
        None, "--midi", help="Also write a MIDI rendering of the result"
    ),
    check: bool = typer.Option(
        False, "--check", help="Re-read the result with music21 and verify measure durations"
    ),
    json_output: bool = typer.Option(
        False, "--json", help="Output results as JSON (for scripting)"
    ),
    verbose: bool = typer.Option(
        False, "-v", "--verbose", help="Verbose output"
    ),
):
    """Simplify a MusicXML score.

    **Examples:**

        score-simplifier simplify song.musicxml -l 2

        score-simplifier simplify piano.mxl -l 4 --soprano-level 5 -o easy.mxl
    """
    from .analysis import ScoreAnalyzer
    from .core import ContainerFormat, ScoreType
    from .output import MIDIExporter, MusicXMLExporter, check_closure
    from .processing import SimplificationConfig, Simplifier

    _configure_logging(verbose)
    timings = StageTimings()

    timings.start("parse")
    _, parsed = _load_score(input_file)
    timings.stop()

    if mxl is not None:
        compressed = mxl
    elif output is not None:
        compressed = output.suffix.lower() == ".mxl"
    else:
        compressed = parsed.container is ContainerFormat.MXL

    if output is None:
        suffix = ".mxl" if compressed else ".musicxml"
        output = input_file.with_name(f"{input_file.stem}_L{level}{suffix}")

    if not json_output:
        console.print(f"[blue]Simplifying:[/blue] {input_file} (level {level})")

    timings.start("analyze")
    analyzed = ScoreAnalyzer().analyze(parsed)
    timings.stop()

    timings.start("simplify")
    config = SimplificationConfig(main_level=level, soprano_level=soprano_level, bass_level=bass_level)
    simplified = Simplifier(config).simplify(analyzed)
    timings.stop()

    timings.start("export")
    exporter = MusicXMLExporter()
    exporter.export_file(simplified, output, compressed=compressed)
    if midi is not None:
        MIDIExporter().export(simplified, midi)
    timings.stop()

    problems = None
    if check:
        problems = check_closure(exporter.to_xml(simplified))

    notes_before = sum(len(m.notes) for m in parsed.measures)
    notes_after = sum(len(m.notes) for m in simplified.measures)

    if json_output:
        result = {
            "input": str(input_file),
            "output": str(output),
            "level": level,
            "score_type": simplified.score_type.value,
            "notes_before": notes_before,
            "notes_after": notes_after,
            "anacrusis": simplified.is_anacrusis,
        }
        if simplified.score_type is ScoreType.GRAND_STAFF:
            result["soprano_level"] = simplified.soprano_level
            result["bass_level"] = simplified.bass_level
        if midi is not None:
            result["midi"] = str(midi)
        if problems is not None:
            result["closure_problems"] = problems
        if verbose:
            result["timings"] = timings.to_dict()
        console.print_json(data=result)
    else:
        console.print(f"  Notes: {notes_before} -> {notes_after}")
        if simplified.score_type is ScoreType.GRAND_STAFF:
            console.print(
                f"  Soprano level: {simplified.soprano_level}, bass level: {simplified.bass_level}"
            )
        console.print(f"[blue]Exported to:[/blue] {output}")
        if midi is not None:
            console.print(f"[blue]MIDI:[/blue] {midi}")
        if problems is not None:
            if problems:
                for problem in problems:
                    console.print(f"[yellow]Closure: {problem}[/yellow]")
            else:
                console.print("[green][OK] Every voice fills its measures[/green]")
        if verbose:
            timings.print_summary()

    if problems:
        raise typer.Exit(2)


@app.command()
def analyze(
    input_file: Path = typer.Argument(..., help="Input score (.xml, .musicxml or .mxl)"),
    json_output: bool = typer.Option(
        False, "--json", help="Output results as JSON (for scripting)"
    ),
    verbose: bool = typer.Option(
        False, "-v", "--verbose", help="Verbose output (list locked notes)"
    ),
):
    """Analyze a score: locks, rhythm patterns and voice separation."""
    from .analysis import ScoreAnalyzer

    _configure_logging(verbose)
    _, parsed = _load_score(input_file)
    analyzed = ScoreAnalyzer().analyze(parsed)

    locks = {reason.value: count for reason, count in analyzed.lock_summary().items()}
    patterns: Counter = Counter()
    for counts in analyzed.rhythm_patterns:
        patterns.update(counts)
    separation = analyzed.separation

    if json_output:
        result = {
            "title": analyzed.metadata.title,
            "score_type": analyzed.score_type.value,
            "measures": len(analyzed.measures),
            "anacrusis": analyzed.is_anacrusis,
            "strong_beats": [str(b) for b in analyzed.strong_beats],
            "locks": locks,
            "rhythm_patterns": dict(patterns),
        }
        if analyzed.voices:
            result["voices"] = {part.value: len(notes) for part, notes in analyzed.voices.items()}
            result["separation"] = {
                "tiers": separation.count_by_tier(),
                "anomalies": len(separation.anomalies),
                "oracle_used": separation.oracle_used,
            }
        console.print_json(data=result)
        return

    console.print(f"\n[bold]Analysis:[/bold] {analyzed.metadata.title}")
    console.print(f"  Score type: {analyzed.score_type.value}")
    console.print(f"  Measures: {len(analyzed.measures)}")
    console.print(f"  Anacrusis: {'yes' if analyzed.is_anacrusis else 'no'}")
    console.print(f"  Strong beats: {', '.join(str(b) for b in analyzed.strong_beats)}")

    _show_counts_table("Locked Notes", "Reason", locks)
    _show_counts_table("Rhythm Patterns", "Pattern", dict(patterns))

    if analyzed.voices:
        table = Table(title="Voice Separation")
        table.add_column("Voice", style="cyan")
        table.add_column("Notes", style="yellow")
        for part, notes in analyzed.voices.items():
            table.add_row(part.value.title(), str(len(notes)))
        console.print(table)
        tiers = ", ".join(f"{tier}: {count}" for tier, count in separation.count_by_tier().items())
        console.print(f"  Assignment tiers: {tiers or 'none'}")
        console.print(f"  Anomalies: {len(separation.anomalies)}")

    if verbose and analyzed.locked_notes:
        _show_locked_table(analyzed)


@app.command()
def levels(
    grand_staff: bool = typer.Option(
        False, "--grand-staff", help="Describe grand-staff (piano) levels"
    ),
):
    """Describe the simplification levels."""
    from .core import ScoreType
    from .processing import LEVEL_DESCRIPTIONS, SimplificationConfig

    score_type = ScoreType.GRAND_STAFF if grand_staff else ScoreType.SINGLE_STAFF
    table = Table(title="Simplification Levels")
    table.add_column("Level", style="cyan")
    table.add_column("Title", style="green")
    table.add_column("Description")
    if grand_staff:
        table.add_column("Soprano", style="yellow")
        table.add_column("Bass", style="magenta")

    for level, info in LEVEL_DESCRIPTIONS[score_type].items():
        row = [str(level), info["title"], info["description"]]
        if grand_staff:
            config = SimplificationConfig(main_level=level)
            recipe = config.recipe
            for voice, default in (("soprano", recipe.soprano), ("bass", recipe.bass)):
                allowed = config.sub_level_range(voice)
                row.append(f"{default} ({allowed.start}-{allowed.stop - 1})")
        table.add_row(*row)

    console.print(table)


@app.command()
def info(
    input_file: Path = typer.Argument(..., help="Input score (.xml, .musicxml or .mxl)"),
):
    """Show metadata of a score file."""
    _configure_logging(False)
    _, parsed = _load_score(input_file)
    metadata = parsed.metadata

    table = Table(title=f"Score Info: {input_file.name}")
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Title", metadata.title)
    table.add_row("Composer", metadata.composer)
    table.add_row("Tempo", f"{metadata.tempo} BPM")
    table.add_row("Time", f"{metadata.time_signature} ({metadata.time_signature.type})")
    table.add_row("Key", f"{metadata.key_signature.fifths:+d} fifths, {metadata.key_signature.mode}")
    table.add_row("Clefs", ", ".join(metadata.clefs) or "-")
    table.add_row("Staves", str(metadata.staves))
    table.add_row("Score type", parsed.score_type.value)
    table.add_row("Container", parsed.container.value)
    table.add_row("Measures", str(len(parsed.measures)))
    table.add_row("Notes", str(sum(len(m.notes) for m in parsed.measures)))
    if metadata.text_annotations:
        table.add_row("Text", "; ".join(metadata.text_annotations))
    console.print(table)


def _show_counts_table(title: str, label: str, counts: Dict[str, int]) -> None:
    """Display a name -> count table."""
    table = Table(title=title)
    table.add_column(label, style="cyan")
    table.add_column("Count", style="yellow")
    for name, count in sorted(counts.items(), key=lambda item: (-item[1], item[0])):
        table.add_row(name, str(count))
    console.print(table)


def _show_locked_table(analyzed):
    """Display locked notes in a table."""
    table = Table(title="Locked Notes")
    table.add_column("Measure", style="cyan")
    table.add_column("Beat", style="green")
    table.add_column("Pitch", style="yellow")
    table.add_column("Reason", style="magenta")

    for measure in analyzed.measures:
        for note in measure.notes:
            if note.is_locked:
                table.add_row(
                    str(measure.number),
                    str(note.start_beat),
                    note.pitch.name,
                    note.lock_reason.value,
                )

    console.print(table)


def main():
    """Entry point."""
    app()


if __name__ == "__main__":
    main()
