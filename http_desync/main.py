"""CLI interface for http-desync.

Provides a command-line interface for mass-scanning targets for CL.TE and
TE.CL request smuggling, listing the mutation catalog and printing the probe
request behind a finding.
"""

import asyncio
import sys
from typing import Optional, List, TextIO

import click
from rich.table import Table
from rich import box

from http_desync import __version__
from http_desync.core.config import ScanConfig, NetworkConfig, DEFAULT_METHODS, DEFAULT_HEADERS
from http_desync.core.engine import DesyncScanner
from http_desync.core.exceptions import ConfigError, ParseError, PersistenceError
from http_desync.core.models import ScanSummary
from http_desync.payloads.builder import build_single_test
from http_desync.payloads.mutations import (
    MUTATIONS,
    filter_mutations,
    generate_mutations,
    get_categories_summary,
)
from http_desync.utils.logging import ResultLog, setup_logging, console


BANNER = r"""
[bold cyan]
  _     _   _                  _
 | |__ | |_| |_ _ __        __| | ___  ___ _   _ _ __   ___
 | '_ \| __| __| '_ \ _____/ _` |/ _ \/ __| | | | '_ \ / __|
 | | | | |_| |_| |_) |_____| (_| |  __/\__ \ |_| | | | | (__
 |_| |_|\__|\__| .__/      \__,_|\___||___/\__, |_| |_|\___|
               |_|                         |___/
[/bold cyan]
[dim]Mass CL.TE / TE.CL request smuggling scanner[/dim]
"""


def print_banner():
    """Print the tool banner."""
    console.print(BANNER)


@click.group()
@click.version_option(version=__version__, prog_name="http-desync")
def cli():
    """http-desync: mass HTTP request smuggling scanner

    Tests every target read from the input against every enabled
    Transfer-Encoding mutation for CL.TE and TE.CL desynchronisation.
    """
    pass


@cli.command()
@click.argument("input", type=click.File("r", encoding="utf-8"), default="-")
@click.option(
    "--workers", "-c",
    type=int,
    default=10,
    help="Number of concurrent workers"
)
@click.option(
    "--method", "-m",
    "methods",
    multiple=True,
    help="HTTP method to test (repeatable, default GET POST PUT DELETE)"
)
@click.option(
    "--header", "-H",
    multiple=True,
    help="Extra raw header line (repeatable, replaces the defaults)"
)
@click.option(
    "--delay",
    type=float,
    default=5.0,
    help="Seconds on top of the baseline before a request counts as hanging"
)
@click.option(
    "--stop-after", "-x",
    type=int,
    default=0,
    help="Stop testing a target after this many findings (0 = never)"
)
@click.option(
    "--max-errors",
    type=int,
    default=0,
    help="Stop testing a target after this many errors (0 = never)"
)
@click.option(
    "--enable", "-e",
    multiple=True,
    help="Only test mutations matching this glob (repeatable)"
)
@click.option(
    "--disable", "-d",
    multiple=True,
    help="Skip mutations matching this glob (repeatable, wins over --enable)"
)
@click.option(
    "--state", "-s",
    type=click.Path(dir_okay=False),
    default="smuggles.state",
    help="State file used to resume scans"
)
@click.option(
    "--checkpoint-interval",
    type=float,
    default=60.0,
    help="Seconds between state checkpoints"
)
@click.option(
    "--output", "-o",
    type=click.Path(dir_okay=False),
    help="Also append finding lines to this file"
)
@click.option(
    "--verbose", "-v",
    is_flag=True,
    help="Verbose output"
)
@click.option(
    "--quiet", "-q",
    is_flag=True,
    help="Quiet mode (finding lines only)"
)
@click.option(
    "--debug",
    is_flag=True,
    help="Log every request with its elapsed time"
)
@click.option(
    "--log-file",
    type=click.Path(dir_okay=False),
    help="Write log events to this file"
)
@click.option(
    "--json-logs",
    is_flag=True,
    help="Render log events as JSON"
)
def scan(
    input: TextIO,
    workers: int,
    methods: tuple,
    header: tuple,
    delay: float,
    stop_after: int,
    max_errors: int,
    enable: tuple,
    disable: tuple,
    state: str,
    checkpoint_interval: float,
    output: Optional[str],
    verbose: bool,
    quiet: bool,
    debug: bool,
    log_file: Optional[str],
    json_logs: bool,
):
    """Scan the URLs in INPUT (one per line, default stdin).

    Findings are printed as "<method> <url> <CL.TE|TE.CL> <mutation>".
    Progress is saved to the state file so an interrupted scan resumes
    without repeating completed tests.

    Examples:

      http-desync scan targets.txt

      cat targets.txt | http-desync scan -c 50 -x 1

      http-desync scan targets.txt -e 'line*' -d '*tab*'
    """
    if not quiet:
        print_banner()

    log_level = "DEBUG" if (verbose or debug) else "INFO"
    setup_logging(level=log_level, json_output=json_logs, log_file=log_file, quiet=quiet)

    config = ScanConfig(
        workers=workers,
        methods=list(methods) or list(DEFAULT_METHODS),
        headers=list(header) or list(DEFAULT_HEADERS),
        delay=delay,
        stop_after=stop_after,
        max_errors=max_errors,
        state_file=state,
        checkpoint_interval=checkpoint_interval,
        enabled=list(enable),
        disabled=list(disable),
        network=NetworkConfig(debug=debug),
        verbose=verbose,
        quiet=quiet,
    )

    output_file = None
    try:
        if output:
            output_file = open(output, "a", encoding="utf-8")
        scanner = DesyncScanner(config, result_log=ResultLog(output=output_file))

        if not quiet:
            console.print(
                f"[cyan]Mutations:[/cyan] {len(scanner.mutations)}  "
                f"[cyan]Methods:[/cyan] {' '.join(config.methods)}  "
                f"[cyan]Workers:[/cyan] {config.workers}"
            )

        summary = asyncio.run(scanner.run(input))

        if not quiet:
            _print_summary(summary)
        sys.exit(0)

    except ConfigError as e:
        console.print(f"[red]Configuration error:[/red] {e}")
        sys.exit(2)
    except PersistenceError as e:
        console.print(f"[red]State error:[/red] {e}")
        sys.exit(1)
    except KeyboardInterrupt:
        console.print("\n[yellow]Scan interrupted by user, state saved[/yellow]")
        sys.exit(130)
    finally:
        if output_file is not None:
            output_file.close()


def _print_summary(summary: ScanSummary):
    """Print scan summary table."""
    console.print()

    table = Table(title="Scan Summary", box=box.ROUNDED)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="white")

    table.add_row("Duration", f"{summary.duration:.2f}s")
    table.add_row("Targets", str(summary.targets_read))
    table.add_row("Invalid Lines", str(summary.parse_errors))
    table.add_row(
        "Baselines",
        f"{summary.baselines_measured} measured, {summary.baselines_reused} reused",
    )
    table.add_row("Tests Planned", str(summary.tests_planned))
    table.add_row("Tests Dispatched", str(summary.tests_dispatched))
    table.add_row("Tests Skipped", str(summary.tests_skipped))
    table.add_row("Tests Completed", str(summary.tests_completed))
    table.add_row("Errors", str(summary.errors))
    table.add_row("Findings", str(summary.findings))

    console.print(table)

    if summary.finding_lines:
        console.print()
        findings = Table(title="Desyncs Found", box=box.ROUNDED)
        findings.add_column("Method", style="cyan")
        findings.add_column("Target", style="white")
        findings.add_column("Type", style="red")
        findings.add_column("Mutation", style="magenta")
        for line in summary.finding_lines:
            findings.add_row(*line.split(" ", 3))
        console.print(findings)


@cli.command()
@click.option("--enable", "-e", multiple=True, help="Only list mutations matching this glob")
@click.option("--disable", "-d", multiple=True, help="Hide mutations matching this glob")
@click.option("--categories", is_flag=True, help="Show counts per category instead")
def mutations(enable: tuple, disable: tuple, categories: bool):
    """List the Transfer-Encoding mutations a scan would use."""
    if categories:
        table = Table(title="Mutation Categories", box=box.ROUNDED)
        table.add_column("Category", style="cyan")
        table.add_column("Count", style="white")
        for category, count in get_categories_summary().items():
            table.add_row(category.value, str(count))
        console.print(f"\n[cyan]Total mutations:[/cyan] {len(MUTATIONS)}\n")
        console.print(table)
        return

    selected = filter_mutations(generate_mutations(), list(enable), list(disable))
    for name in sorted(selected):
        click.echo(name)


@cli.command()
@click.argument("method")
@click.argument("url")
@click.argument("desync_type", metavar="TYPE")
@click.argument("mutation")
@click.option(
    "--header", "-H",
    multiple=True,
    help="Extra raw header line (repeatable, replaces the defaults)"
)
def poc(method: str, url: str, desync_type: str, mutation: str, header: tuple):
    """Print the probe request for one finding.

    Arguments match a finding line, e.g.

      http-desync poc POST https://example.com/ CL.TE lineprefix-space
    """
    headers: List[str] = list(header) or list(DEFAULT_HEADERS)
    try:
        request = build_single_test(method, url, desync_type, mutation, headers=headers)
    except ConfigError as e:
        console.print(f"[red]Configuration error:[/red] {e}")
        sys.exit(2)
    except ParseError as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(2)
    click.echo(request, nl=False)


def main():
    """Main entry point."""
    cli()


if __name__ == "__main__":
    main()
