"""Command-line interface for clip-gate.

Uses Typer for a modern, type-hinted CLI experience.
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Annotated, Optional

import typer
from dotenv import load_dotenv
from rich.console import Console

# Load environment variables from .env files
# Priority: local .env > ~/.clip-gate/.env
_user_env = Path.home() / ".clip-gate" / ".env"
if _user_env.exists():
    load_dotenv(_user_env)
load_dotenv()  # Load local .env (overrides user-level)
from rich.panel import Panel
from rich.table import Table

from clip_gate import __version__
from clip_gate.config import PipelineConfig, load_pipeline_config
from clip_gate.errors import ClipGateError, format_error_for_display
from clip_gate.gates import GateContext, GateRunner, GateVerdict, sanitize_prompt
from clip_gate.gates.overlay import build_overlay_spec, overlay_template_path
from clip_gate.logging import LogConfig, LogLevel, configure_logging
from clip_gate.media.ffmpeg_binary import get_ffprobe_path, verify_ffmpeg
from clip_gate.media.snapshots import Clip, SnapshotScope
from clip_gate.producer import LocalClipGenerator, SceneRequest, create_inference_provider, create_producer
from clip_gate.review.queue import ReviewQueue
from clip_gate.thresholds import BodyCamSubType, CamFormat, get_policy

# Create the main Typer app
app = typer.Typer(
    name="clip-gate",
    help="Publish gating for AI-generated security camera clips.",
    add_completion=False,
    rich_markup_mode="rich",
)

console = Console()



def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"clip-gate version {__version__}")
        raise typer.Exit()


def _load_config(config_path: Path | None, verbose: bool = False) -> PipelineConfig:
    """Load the pipeline config and set up logging from it."""
    try:
        config = load_pipeline_config(config_path)
    except ClipGateError as e:
        console.print(f"[red]Error:[/red] {format_error_for_display(e)}")
        raise typer.Exit(1)

    level = LogLevel.VERBOSE if verbose else LogLevel.from_name(config.log_level)
    configure_logging(LogConfig(level=level, log_file=config.log_file, json_format=config.log_json))
    return config


def _verdict_table(verdicts: list[GateVerdict], title: str) -> Table:
    table = Table(title=title)
    table.add_column("Gate", style="cyan", justify="right")
    table.add_column("Name", style="white")
    table.add_column("Outcome")
    table.add_column("Class", style="dim")
    table.add_column("Detail", style="yellow", max_width=60)

    styles = {"pass": "green", "fail": "red"}
    for verdict in verdicts:
        outcome = verdict.outcome.value
        detail = verdict.reason or ""
        if verdict.corrective_action is not None:
            detail = f"{detail} -> {verdict.corrective_action.value}".strip()
        table.add_row(
            str(verdict.gate_index),
            verdict.gate_name,
            f"[{styles.get(outcome, 'white')}]{outcome.upper()}[/]",
            verdict.classification.value,
            detail,
        )
    return table


@app.callback()
def main(
    version: Annotated[
        Optional[bool],
        typer.Option("--version", "-V", callback=version_callback, is_eager=True, help="Show version and exit"),
    ] = None,
) -> None:
    """Clip Gate - quality and policy gates for generated security camera clips."""


@app.command()
def sanitize(
    prompt: Annotated[str, typer.Argument(help="Generation prompt to screen")],
    as_json: Annotated[bool, typer.Option("--json", help="Print the result as JSON")] = False,
) -> None:
    """Screen a prompt before generation (blocked terms and rewrites).

    Exits with status 2 when the prompt is blocked.
    """
    result = sanitize_prompt(prompt)

    if as_json:
        console.print_json(json.dumps(result.to_dict()))
    elif not result.passed:
        console.print(Panel(
            "\n".join(f"  - {term}" for term in sorted(result.blocked_terms)),
            title="[red]Prompt blocked[/red]",
        ))
    else:
        if result.rewrites:
            table = Table(title="Rewrites")
            table.add_column("Original", style="yellow")
            table.add_column("Replacement", style="green")
            for original, replacement in result.rewrites:
                table.add_row(original, replacement)
            console.print(table)
        console.print(Panel(result.sanitized_text or "", title="[green]Sanitized prompt[/green]"))

    if not result.passed:
        raise typer.Exit(2)


@app.command()
def policy(
    fmt: Annotated[CamFormat, typer.Argument(help="Camera format")],
) -> None:
    """Show the gate thresholds for a format."""
    p = get_policy(fmt)
    motion = p.motion.model_dump(exclude_none=True)
    audio = p.audio.model_dump()

    console.print(Panel(
        f"[bold]Format:[/bold] {p.format.value}\n"
        f"[bold]Static camera:[/bold] {p.static_camera}\n"
        f"[bold]Motion bounds:[/bold] {motion}\n"
        f"[bold]Audio floor:[/bold] {audio['floor'] if audio['floor'] is not None else 'none'} dB\n"
        f"[bold]Audio ceiling:[/bold] {audio['ceiling'] if audio['ceiling'] is not None else 'none'} dB",
        title="Format Policy",
    ))


@app.command()
def check(
    video: Annotated[Path, typer.Argument(help="Degraded clip to run through the gates", exists=True)],
    fmt: Annotated[CamFormat, typer.Option("--format", "-f", help="Camera format")],
    sub_type: Annotated[
        Optional[BodyCamSubType],
        typer.Option("--sub-type", "-s", help="Body cam sub-type"),
    ] = None,
    concept: Annotated[str, typer.Option("--concept", "-c", help="Scene description for the content review")] = "",
    title: Annotated[str, typer.Option("--title", "-t", help="Scene title for the HUD")] = "",
    config_path: Annotated[
        Optional[Path],
        typer.Option("--config", help="Pipeline config file"),
    ] = None,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Show the gate audit trail")] = False,
) -> None:
    """Run one pass of the seven gates on an existing clip.

    No corrective actions are applied. Use this to see why a clip fails.
    """
    config = _load_config(config_path, verbose)
    from clip_gate.media.ffmpeg import FFmpegToolkit

    sub = sub_type.value if sub_type else None

    async def run():
        inference = create_inference_provider(config)
        toolkit = FFmpegToolkit(
            timeout=config.toolkit_timeout,
            audio_bed_dir=config.audio_bed_dir,
            subject_detector=inference,
        )
        with SnapshotScope(config.temp_dir, prefix="check") as scope:
            context = GateContext(
                fmt=fmt,
                toolkit=toolkit,
                scope=scope,
                inference=inference,
                sub_type=sub,
                concept=concept,
                keyframe_count=config.keyframe_count,
                overlay_spec=build_overlay_spec(fmt, config.overlay, title=title or None, sub_type=sub),
                overlay_template=overlay_template_path(config.overlay_dir, fmt, sub),
                scene_id=video.stem,
            )
            return await GateRunner().run(Clip(path=video, label="input"), context)

    try:
        result = asyncio.run(run())
    except ClipGateError as e:
        console.print(f"[red]Error:[/red] {format_error_for_display(e)}")
        raise typer.Exit(1)

    console.print(_verdict_table(result.verdicts, f"Gate results: {video.name}"))
    state_style = {"passed": "green", "hard_failed": "red", "soft_failed": "yellow"}
    state = result.state.value
    console.print(f"\n[bold]Result:[/bold] [{state_style[state]}]{state.upper()}[/]")
    if result.crop_safe is not None:
        console.print(f"[bold]Crop safe:[/bold] {result.crop_safe}")

    if not result.overall_pass:
        raise typer.Exit(1)


@app.command()
def produce(
    source: Annotated[Path, typer.Argument(help="Pre-rendered clip standing in for the generator", exists=True)],
    fmt: Annotated[CamFormat, typer.Option("--format", "-f", help="Camera format")],
    scenario: Annotated[str, typer.Option("--scenario", help="What happens in the scene")],
    scene_id: Annotated[Optional[str], typer.Option("--scene-id", help="Scene identifier")] = None,
    title: Annotated[str, typer.Option("--title", "-t", help="Scene title")] = "",
    sub_type: Annotated[
        Optional[BodyCamSubType],
        typer.Option("--sub-type", "-s", help="Body cam sub-type"),
    ] = None,
    config_path: Annotated[
        Optional[Path],
        typer.Option("--config", help="Pipeline config file"),
    ] = None,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Show the gate audit trail")] = False,
) -> None:
    """Produce one scene: screen, degrade, gate, correct, crop and export."""
    config = _load_config(config_path, verbose)

    request = SceneRequest(
        scene_id=scene_id or source.stem,
        format=fmt,
        scenario=scenario,
        title=title,
        sub_type=sub_type.value if sub_type else None,
    )

    try:
        producer = create_producer(config, LocalClipGenerator(source))
        with console.status(f"[cyan]Producing {request.scene_id}...[/cyan]"):
            outcome = asyncio.run(producer.produce(request))
    except ClipGateError as e:
        console.print(f"[red]Error:[/red] {format_error_for_display(e)}")
        raise typer.Exit(1)

    if outcome.gate_trail:
        console.print(_verdict_table(outcome.gate_trail, f"Last attempt: {request.scene_id}"))

    if outcome.accepted:
        console.print(Panel(
            f"[bold]Output:[/bold] {outcome.scene}\n"
            f"[bold]Crop safe:[/bold] {outcome.crop_safe}\n"
            f"[bold]Attempts:[/bold] {outcome.attempts}\n"
            f"[bold]Corrective actions:[/bold] {', '.join(outcome.corrective_actions) or 'none'}",
            title="[green]Accepted[/green]",
        ))
        return

    reasons = "\n".join(f"  - {r}" for r in outcome.failure_reasons)
    console.print(Panel(
        f"[bold]Kind:[/bold] {outcome.rejection_kind.value if outcome.rejection_kind else 'unknown'}\n"
        f"[bold]Reason:[/bold] {outcome.rejection_reason}\n"
        f"[bold]Attempts:[/bold] {outcome.attempts}"
        + (f"\n[bold]Failures:[/bold]\n{reasons}" if reasons else ""),
        title="[red]Rejected[/red]",
    ))
    raise typer.Exit(2 if outcome.hard_fail else 1)


@app.command()
def check_deps(
    config_path: Annotated[
        Optional[Path],
        typer.Option("--config", help="Pipeline config file"),
    ] = None,
) -> None:
    """Check that FFmpeg and the vision provider are usable.

    Exits with status 1 when anything required is missing.
    """
    config = _load_config(config_path)
    ffmpeg_ok, ffmpeg_message = verify_ffmpeg()
    inference = create_inference_provider(config)
    inference_ok = inference.is_available()
    ffprobe = get_ffprobe_path()

    table = Table(title="Dependency Status")
    table.add_column("Component", style="cyan")
    table.add_column("Status", style="white")
    table.add_column("Details", style="dim")

    table.add_row(
        "FFmpeg",
        "[green]Available[/green]" if ffmpeg_ok else "[red]Not Found[/red]",
        ffmpeg_message,
    )
    table.add_row(
        "FFprobe",
        "[green]Available[/green]" if ffprobe else "[yellow]Missing[/yellow]",
        ffprobe or "Falling back to parsing ffmpeg -i output",
    )
    table.add_row(
        "Vision",
        "[green]Configured[/green]" if inference_ok else "[red]No API key[/red]",
        f"{inference.provider_name} ({inference.config.model})",
    )
    console.print(table)

    if not (ffmpeg_ok and inference_ok):
        raise typer.Exit(1)


# =============================================================================
# Review Queue Commands
# =============================================================================

# Create review subcommand group
review_app = typer.Typer(
    name="review",
    help="Manage the review queue for scenes that exhausted their retries.",
)
app.add_typer(review_app, name="review")


def _open_queue(review_dir: Path | None) -> ReviewQueue | None:
    review_dir = review_dir or Path.cwd() / "review"
    if not review_dir.exists():
        console.print("[yellow]No review queue found.[/yellow]")
        console.print(f"Expected location: {review_dir}")
        return None
    return ReviewQueue(review_dir)


@review_app.command("list")
def review_list(
    review_dir: Annotated[
        Optional[Path],
        typer.Option("--dir", "-d", help="Review directory"),
    ] = None,
    limit: Annotated[
        int,
        typer.Option("--limit", "-n", help="Maximum number of scenes to show"),
    ] = 20,
) -> None:
    """List all scenes in the review queue."""
    queue = _open_queue(review_dir)
    if queue is None:
        return

    scenes = queue.list_all()
    if not scenes:
        console.print("[green]Review queue is empty.[/green]")
        return

    table = Table(title=f"Review Queue ({queue.count()} scenes)")
    table.add_column("Scene ID", style="cyan", max_width=25)
    table.add_column("Format", style="white")
    table.add_column("Attempts", style="green", justify="right")
    table.add_column("Rejection Reasons", style="yellow", max_width=50)

    for scene in scenes[:limit]:
        reasons = "\n".join(scene.rejection_reasons[:3])
        if len(scene.rejection_reasons) > 3:
            reasons += f"\n... +{len(scene.rejection_reasons) - 3} more"
        table.add_row(scene.scene_id, scene.format, str(scene.attempts), reasons)

    console.print(table)

    if limit < len(scenes):
        console.print(f"[dim]Showing {limit} of {len(scenes)} scenes. Use --limit to show more.[/dim]")


@review_app.command("show")
def review_show(
    scene_id: Annotated[str, typer.Argument(help="Scene ID to show details for")],
    review_dir: Annotated[
        Optional[Path],
        typer.Option("--dir", "-d", help="Review directory"),
    ] = None,
) -> None:
    """Show detailed information about a rejected scene."""
    queue = _open_queue(review_dir)
    if queue is None:
        raise typer.Exit(1)

    scene = queue.get(scene_id)
    if not scene:
        console.print(f"[red]Error:[/red] Scene '{scene_id}' not found in review queue.")
        raise typer.Exit(1)

    console.print(Panel(
        f"[bold]Scene ID:[/bold] {scene.scene_id}\n"
        f"[bold]Format:[/bold] {scene.format}\n"
        f"[bold]Rejected At:[/bold] {scene.rejected_at}\n"
        f"[bold]Attempts:[/bold] {scene.attempts}\n"
        f"[bold]Clip:[/bold] {scene.clip_path or 'not kept'}",
        title="Scene Details",
    ))

    console.print("\n[bold yellow]Rejection Reasons:[/bold yellow]")
    for reason in scene.rejection_reasons:
        console.print(f"  - {reason}")

    if scene.gate_trail:
        console.print(_verdict_table(
            [GateVerdict.from_dict(v) for v in scene.gate_trail], "Last attempt"
        ))

    console.print("\n[bold]Prompt:[/bold]")
    console.print(Panel(scene.prompt, border_style="dim"))

    if scene.ffplay_command:
        console.print(f"\n[cyan]ffplay:[/cyan] {scene.ffplay_command}")


@review_app.command("remove")
def review_remove(
    scene_id: Annotated[str, typer.Argument(help="Scene ID to remove")],
    review_dir: Annotated[
        Optional[Path],
        typer.Option("--dir", "-d", help="Review directory"),
    ] = None,
) -> None:
    """Remove a scene (and its kept clip) from the review queue."""
    queue = _open_queue(review_dir)
    if queue is None:
        raise typer.Exit(1)

    if not queue.remove(scene_id):
        console.print(f"[red]Error:[/red] Scene '{scene_id}' not found in review queue.")
        raise typer.Exit(1)
    console.print(f"[green]Removed:[/green] Scene '{scene_id}' removed from review queue.")


@review_app.command("clear")
def review_clear(
    review_dir: Annotated[
        Optional[Path],
        typer.Option("--dir", "-d", help="Review directory"),
    ] = None,
    yes: Annotated[
        bool,
        typer.Option("--yes", "-y", help="Skip confirmation"),
    ] = False,
) -> None:
    """Clear all scenes from the review queue.

    This cannot be undone.
    """
    queue = _open_queue(review_dir)
    if queue is None:
        return

    count = queue.count()
    if count == 0:
        console.print("[green]Review queue is already empty.[/green]")
        return

    if not yes:
        if not typer.confirm(f"Clear {count} scenes from review queue?"):
            console.print("[yellow]Cancelled.[/yellow]")
            return

    removed = queue.clear()
    console.print(f"[green]Cleared {removed} scenes from review queue.[/green]")


@review_app.command("summary")
def review_summary(
    review_dir: Annotated[
        Optional[Path],
        typer.Option("--dir", "-d", help="Review directory"),
    ] = None,
) -> None:
    """Show counts by failing gate and by format."""
    queue = _open_queue(review_dir)
    if queue is None:
        return

    summary = queue.get_summary()
    if summary["total_scenes"] == 0:
        console.print("[green]Review queue is empty.[/green]")
        return

    console.print(Panel(f"[bold]Total Scenes:[/bold] {summary['total_scenes']}", title="Review Queue Summary"))

    for key, heading in (("by_reason", "By Failure"), ("by_format", "By Format")):
        if not summary[key]:
            continue
        table = Table(title=heading, show_header=True, header_style="bold")
        table.add_column("Key", style="yellow")
        table.add_column("Count", style="cyan", justify="right")
        for name, count in sorted(summary[key].items(), key=lambda x: -x[1]):
            table.add_row(name, str(count))
        console.print(table)


if __name__ == "__main__":
    app()
