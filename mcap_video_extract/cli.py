"""
Command line interface for the MCAP video extractor.

    mcap-video-extract recording.mcap                    # list video channels
    mcap-video-extract recording.mcap /camera/front      # extract one channel
    mcap-video-extract recording.mcap all -o videos/     # extract every channel
"""

import json
from pathlib import Path
from typing import Any, Dict, List, Optional

import typer
from rich.table import Table

from .commands import ExtractCommand, ListCommand
from .config import console, load_config, setup_logging
from .config.constants import MESSAGE_SCHEMA_NAME
from .config.logging import err_console

app = typer.Typer(
    name="mcap-video-extract",
    help="Extract foxglove.CompressedVideo channels from MCAP recordings into video files",
    add_completion=False,
)


def _print_channels(channels: List[Dict[str, Any]]) -> None:
    if not channels:
        console.print(f"No {MESSAGE_SCHEMA_NAME} messages found")
        return

    table = Table(title="Video channels", show_header=True, header_style="bold magenta")
    table.add_column("Channel", style="cyan", no_wrap=True)
    table.add_column("Codec")
    table.add_column("Frames", justify="right")
    table.add_column("Duration", justify="right")
    table.add_column("Errors", justify="right")

    for channel in channels:
        errors = channel['decode_errors']
        table.add_row(
            channel['channel_name'],
            channel['label'] or "[dim]unknown[/dim]",
            str(channel['frame_count']),
            f"{channel['duration_seconds']:.2f}s",
            f"[red]{errors}[/red]" if errors else "0",
        )
    console.print(table)


def _print_results(results: List[Dict[str, Any]]) -> None:
    if not results:
        console.print(f"No {MESSAGE_SCHEMA_NAME} channels to extract")
        return

    table = Table(title="Extraction report", show_header=True, header_style="bold magenta")
    table.add_column("Channel", style="cyan", no_wrap=True)
    table.add_column("Status", justify="center")
    table.add_column("Frames", justify="right")
    table.add_column("Dropped", justify="right")
    table.add_column("Output / Error")

    for result in results:
        if result['status'] == "Completed":
            status = "[green]Completed[/green]"
            detail = result['output_path']
        else:
            status = "[red]Failed[/red]"
            detail = f"{result['error_type']}: {result['error']}"
        table.add_row(
            result['channel_name'],
            status,
            str(result['frames_written']),
            str(result['frames_dropped']),
            detail,
        )
    console.print(table)


@app.command()
def main(
    mcap_file: Path = typer.Argument(..., help="MCAP recording to read"),
    topic: Optional[str] = typer.Argument(None, help="Channel to extract, or 'all'. Lists the video channels when omitted"),
    output: Path = typer.Option(Path("."), "--output", "-o", help="Directory for the extracted video files"),
    timeout: Optional[float] = typer.Option(None, "--timeout", "-t", help="Cancel the whole run after this many seconds"),
    drain_timeout: Optional[float] = typer.Option(None, "--drain-timeout", help="Seconds to wait for each file to be finalized"),
    workers: Optional[int] = typer.Option(None, "--workers", "-w", min=1, help="Channels extracted concurrently"),
    queue_size: Optional[int] = typer.Option(None, "--queue-size", min=1, help="Frames buffered ahead of each muxer"),
    log_level: Optional[str] = typer.Option(None, "--log-level", "-L", help="Log level (DEBUG, INFO, WARNING, ERROR)"),
    log_file: Optional[Path] = typer.Option(None, "--log-file", help="Also write logs to this file"),
    json_output: bool = typer.Option(False, "--json", help="Print the listing or report as JSON"),
):
    """List or extract the compressed video channels of an MCAP recording."""
    try:
        config = load_config({
            'timeout_seconds': timeout,
            'drain_timeout': drain_timeout,
            'max_workers': workers,
            'queue_size': queue_size,
            'log_level': log_level.upper() if log_level else None,
        })
    except ValueError as e:
        err_console.print(f"[red]Invalid configuration:[/red] {e}")
        raise typer.Exit(1)

    setup_logging(config.get_setting('log_level'), log_file)

    if topic is None:
        result = ListCommand().execute(mcap_file=mcap_file, config=config)
    else:
        result = ExtractCommand().execute(
            mcap_file=mcap_file, topic=topic, output_dir=output, config=config
        )

    data = result.get('data')
    if data is None:
        err_console.print(f"[red]Error:[/red] {result.get('error')}")
        raise typer.Exit(1)

    if json_output:
        print(json.dumps(data, indent=2))
    elif topic is None:
        _print_channels(data['channels'])
    else:
        _print_results(data['results'])

    if not result.get('success'):
        raise typer.Exit(1)


if __name__ == "__main__":
    app()
