"""nsprune CLI -- delete a peer's namespaced refs from a repository, then compact.

This module is NEVER imported from nsprune/__init__.py.
It is only loaded via the ``nsprune`` entry point defined in pyproject.toml.
"""

from __future__ import annotations

import logging
from pathlib import Path

import click
from rich.logging import RichHandler

from nsprune.cli.formatting import (
    format_compaction,
    format_deletion,
    format_dry_run,
    format_error,
    format_summary,
    format_usage,
    get_console,
)
from nsprune.exceptions import NsPruneError, UsageError
from nsprune.models.config import HOME_ENV_VAR, PruneConfig
from nsprune.operations.prune import prune_namespace

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FATAL = 1
EXIT_PARTIAL = 2


def configure_logging(verbosity: int) -> None:
    """Send nsprune logs to stderr through Rich: -v for INFO, -vv for DEBUG."""
    pkg_logger = logging.getLogger("nsprune")
    for handler in list(pkg_logger.handlers):
        if isinstance(handler, RichHandler):
            pkg_logger.removeHandler(handler)
    if verbosity <= 0:
        return

    handler = RichHandler(
        console=get_console(stderr=True), show_time=False, show_path=False
    )
    pkg_logger.addHandler(handler)
    pkg_logger.setLevel(logging.DEBUG if verbosity > 1 else logging.INFO)


@click.command(
    context_settings={
        "help_option_names": ["-h", "--help"],
        # extra positional arguments are accepted and ignored
        "allow_extra_args": True,
    }
)
@click.argument("rid", required=False)
@click.argument("nid", required=False)
@click.option(
    "--home",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    envvar=HOME_ENV_VAR,
    help="Node home directory; repositories live in <home>/storage. [env: RAD_HOME, default: ~/.radicle]",
)
@click.option(
    "--backend",
    type=click.Choice(["auto", "sqlite", "git"]),
    default="auto",
    show_default=True,
    help="Storage backend; 'auto' detects it from the repository layout.",
)
@click.option(
    "--lock-retries",
    type=click.IntRange(min=1),
    default=1,
    show_default=True,
    help="Attempts per operation when the store is locked by another process.",
)
@click.option("--dry-run", is_flag=True, help="List matching refs without deleting or compacting.")
@click.option("-v", "--verbose", count=True, help="Log progress to stderr (-vv for debug).")
@click.pass_context
def cli(
    ctx: click.Context,
    rid: str | None,
    nid: str | None,
    home: Path | None,
    backend: str,
    lock_retries: int,
    dry_run: bool,
    verbose: int,
) -> None:
    """Delete every ref under namespaces/NID/ in repository RID, then compact.

    Prints "Deleted <ref>" for each removed reference. Exits 1 on usage or
    fatal errors, 2 if some deletions or the compaction failed.
    """
    out = get_console()
    err = get_console(stderr=True)

    if rid is None or nid is None:
        format_usage(ctx.info_name or "nsprune", err)
        raise SystemExit(EXIT_FATAL)

    configure_logging(verbose)
    if ctx.args:
        logger.debug("Ignoring extra arguments: %s", " ".join(ctx.args))

    try:
        config = PruneConfig.from_env(
            home=home, backend=backend, lock_retries=lock_retries, dry_run=dry_run
        )
        result = prune_namespace(
            rid,
            nid,
            config=config,
            on_delete=lambda outcome: format_deletion(outcome, out, err),
        )
    except UsageError as e:
        format_error(str(e), err)
        format_usage(ctx.info_name or "nsprune", err)
        raise SystemExit(EXIT_FATAL) from None
    except NsPruneError as e:
        format_error(str(e), err)
        raise SystemExit(EXIT_FATAL) from None

    if dry_run:
        format_dry_run(result, out, err)
        return

    if result.compaction is not None:
        format_compaction(result.compaction, err)

    if not result.ok:
        format_summary(result, err)
        raise SystemExit(EXIT_PARTIAL)


main = cli
