"""CLI for git-rework."""

import sys

import rich_click as click

from gitrework import display

# Configure rich-click for pretty help output
click.rich_click.USE_RICH_MARKUP = True
click.rich_click.USE_MARKDOWN = True
click.rich_click.SHOW_ARGUMENTS = True
click.rich_click.GROUP_ARGUMENTS_OPTIONS = True
click.rich_click.STYLE_ERRORS_SUGGESTION = "magenta italic"
click.rich_click.ERRORS_SUGGESTION = "Try running '--help' for more information."
click.rich_click.MAX_WIDTH = 100
click.rich_click.STYLE_OPTION = "bold cyan"
click.rich_click.STYLE_ARGUMENT = "bold cyan"
click.rich_click.STYLE_COMMAND = "bold green"
click.rich_click.STYLE_SWITCH = "bold yellow"
from gitrework.engine import SplitEngine, create_engine, EngineError
from gitrework.git import GitOperations, GitError
from gitrework.session import SessionError, AlreadyInProgress
from gitrework.verification import VerificationError


HELP = """**git {name}** - split a commit into multiple commits.

Run without options on a branch to start: the last commit is taken
apart and its whole change is staged on top of its parent.

Leave staged only what belongs in the first new commit (unstage the
rest) and run `git {name} --continue` to commit it. The changes you
unstaged come back staged for the next round. Repeat until nothing
is left; the last `--continue` finishes the split and moves the
branch onto the new commits.

Run `git {name} --abort` to return to the original commit at any time.

**Examples:**

    git {name}                Start splitting the last commit

    git reset -q -- b.py c.py Keep b.py and c.py for later commits

    git {name} --continue     Commit what is still staged

    git {name} --status       Show whether a split is in progress

**Uncommitted changes:**

    Starting requires a clean working copy unless `--autostash` is
    given or `rebase.autoStash` is enabled. Stashed changes are
    restored when the split finishes, and kept in the stash on abort.
"""


class SplitCommand(click.RichCommand):
    """Command whose usage errors exit with status 1."""

    def parse_args(self, ctx, args):
        try:
            return super().parse_args(ctx, args)
        except click.UsageError as e:
            e.exit_code = 1
            raise


def make_command(name: str) -> click.Command:
    """Build the command for one name (``rework`` or ``retrace``)."""

    @click.command(
        name=f"git-{name}",
        cls=SplitCommand,
        help=HELP.format(name=name),
        context_settings={"help_option_names": ["-h", "--help"]},
    )
    @click.option(
        "--continue", "continue_", is_flag=True,
        help="Commit the staged changes as the next commit and split further."
    )
    @click.option(
        "--abort", is_flag=True,
        help="Abort the process and return to the original commit."
    )
    @click.option(
        "--status", is_flag=True,
        help=f"Report the status of git {name}."
    )
    @click.option(
        "--autostash", is_flag=True,
        help="Stash uncommitted changes when starting and restore them when "
             "the split finishes."
    )
    @click.option(
        "--verbose", "-v", is_flag=True,
        help="Show each git step as it runs."
    )
    @click.pass_context
    def command(ctx, continue_, abort, status, autostash, verbose):
        verbs = [
            flag
            for flag, given in (("--continue", continue_), ("--abort", abort), ("--status", status))
            if given
        ]
        if len(verbs) > 1:
            display.print_usage_error(f"{' and '.join(verbs)} cannot be combined", ctx.get_usage())
            sys.exit(1)

        if autostash and verbs:
            display.print_usage_error("--autostash only applies when starting", ctx.get_usage())
            sys.exit(1)

        display.set_verbose(verbose)

        try:
            git = GitOperations()
        except GitError as e:
            display.print_error(str(e))
            sys.exit(1)

        engine = create_engine(name, git=git)

        try:
            if status:
                display.print_status(engine.status(), name)
            elif abort:
                _abort(engine)
            elif continue_:
                _continue(engine)
            else:
                _start(engine, autostash)

        except AlreadyInProgress as e:
            tip = git.short_id(e.branch) if git.branch_exists(e.branch) else None
            display.print_already_in_progress(name, e.branch, tip)
            sys.exit(1)

        except (EngineError, SessionError, VerificationError, GitError) as e:
            display.print_error(str(e))
            sys.exit(1)

    return command


def _start(engine: SplitEngine, autostash: bool) -> None:
    """Begin a split on the current branch."""
    session = engine.begin(autostash=autostash)
    display.print_started(
        engine.name,
        session.branch,
        engine.git.short_id(session.original),
        session.auto_stashed,
    )


def _continue(engine: SplitEngine) -> None:
    """Take the next slice, finishing when nothing remains."""
    session = engine.store.load()
    commits = engine.step(session)

    if commits is None:
        display.print_remaining(engine.name)
    else:
        display.print_split_complete(session.branch, commits)


def _abort(engine: SplitEngine) -> None:
    """Abort the split in progress."""
    display.console.print("Aborting")
    try:
        session = engine.store.load()
    except SessionError as e:
        display.print_warning(f"{e}\nDiscarding the damaged session.")
        branch = engine.abort_damaged()
        display.print_aborted(engine.name, branch, False)
        return

    session = engine.abort(session)
    display.print_aborted(engine.name, session.branch, session.auto_stashed)


rework = make_command("rework")
retrace = make_command("retrace")


def main():
    """Main entry point."""
    rework()


def retrace_main():
    """Entry point for the git-retrace alias."""
    retrace()


if __name__ == "__main__":
    main()
