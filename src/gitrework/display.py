"""Rich terminal display for git-rework."""

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from gitrework.models import SliceCommit, StatusReport, VerificationResult


console = Console(highlight=False)

_verbose = False


def set_verbose(enabled: bool) -> None:
    """Turn step-by-step output on or off."""
    global _verbose
    _verbose = enabled


def advice_text(name: str) -> str:
    """Guidance shown whenever a split is started or inspected."""
    return (
        "Leave staged only the changes that belong in the next commit\n"
        "(unstage everything else), then commit them with:\n"
        "\n"
        f"  [bold cyan]git {name} --continue[/bold cyan]\n"
        "\n"
        "The process finishes automatically once no changes remain.\n"
        "\n"
        "Abort the process at any time with:\n"
        "\n"
        f"  [bold cyan]git {name} --abort[/bold cyan]"
    )


def print_advice(name: str) -> None:
    console.print()
    console.print(Panel(advice_text(name), title="Next steps", style="cyan", width=70))
    console.print()


def print_started(name: str, branch: str, tip: str, auto_stashed: bool) -> None:
    """Print the start-of-split message."""
    console.print(f"Starting git {name} on '[bold]{branch}[/bold]' ({tip})")
    if auto_stashed:
        print_info("Uncommitted changes were stashed and will be restored when the split finishes.")
    print_advice(name)


def print_status(report: StatusReport, name: str) -> None:
    """Print the state reported by --status."""
    if not report.in_progress:
        console.print(f"Git {name} not in progress")
        return

    suffix = f" ({report.tip})" if report.tip else ""
    console.print(f"Git {name} in progress on branch '[bold]{report.branch}[/bold]'{suffix}")

    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column("Label")
    table.add_column("Value")
    table.add_row("Commits so far:", str(report.slices_extracted))
    if report.started_at:
        table.add_row("Started:", report.started_at)
    console.print(table)

    print_advice(name)


def print_already_in_progress(name: str, branch: str, tip: str | None) -> None:
    suffix = f" ({tip})" if tip else ""
    console.print(f"Git {name} already in progress on '[bold]{branch}[/bold]'{suffix}")
    print_advice(name)


def print_slice_committed(number: int, files: list[str]) -> None:
    """Print progress after a slice has been taken."""
    console.print(f"Commit [bold]{number}[/bold] recorded:")
    for path in files:
        console.print(f"  [green]{path}[/green]")


def print_remaining(name: str) -> None:
    console.print()
    print_info(f"Changes remain staged. Repeat with 'git {name} --continue'.")


def print_split_complete(branch: str, commits: list[SliceCommit]) -> None:
    """Print split completion summary."""
    console.print()
    console.print("[bold green]Split complete![/bold green]")
    console.print()
    console.print(f"  '{branch}' now ends with {len(commits)} commits:")

    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column("Commit", style="yellow")
    table.add_column("Message", style="bold")
    table.add_column("Files", style="dim")
    for entry in commits:
        table.add_row(entry.commit[:8], entry.message, ", ".join(entry.files))
    console.print(table)


def print_stash_restored() -> None:
    print_info("Restored stashed changes.")


def print_aborted(name: str, branch: str | None, auto_stashed: bool) -> None:
    if branch:
        console.print(f"Git {name} aborted, back on '[bold]{branch}[/bold]'")
    else:
        console.print(f"Git {name} aborted, HEAD left detached")
    if auto_stashed:
        print_warning("Your uncommitted changes are still stashed. Restore them with 'git stash pop'.")


def print_verification_result(result: VerificationResult) -> None:
    """Print tree verification result."""
    if result.passed:
        print_info(f"Tree check passed ({result.final_hash[:12]})")
        return

    console.print("[bold red]TREE CHECK: FAILED[/bold red]")

    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column("Label")
    table.add_column("Value")
    table.add_row("Expected:", result.original_hash)
    table.add_row("Got:", result.final_hash)
    console.print(Panel(table, width=70))

    for diff in result.differences:
        console.print(f"  {diff.get('file', 'unknown')}: {diff.get('description', '')}")


def print_usage_error(message: str, usage: str) -> None:
    print_error(message)
    console.print(usage, markup=False)


def print_step(message: str) -> None:
    """Print a progress line, only in verbose mode."""
    if _verbose:
        console.print(f"[dim]  -> {message}[/dim]")


def print_error(message: str) -> None:
    """Print an error message."""
    console.print(f"[bold red]Error:[/bold red] {escape(message)}")


def print_warning(message: str) -> None:
    """Print a warning message."""
    console.print(f"[bold yellow]Warning:[/bold yellow] {escape(message)}")


def print_info(message: str) -> None:
    """Print an info message."""
    console.print(f"[dim]{message}[/dim]")