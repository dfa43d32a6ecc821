import threading
import time

import click
import toml
import yaml
from rich.console import Console
from rich.table import Table

from buildwatch import config
from buildwatch import matcher
from buildwatch import session as session_module
from buildwatch.errors import InvalidPatternError, WatchError
from buildwatch.logger import configure_logging


@click.group()
@click.option("--config", "-c", "config_path", default=None, help="Path to configuration TOML file.")
@click.option("--debug", is_flag=True, help="Enable debug logging.")
@click.pass_context
def main(ctx, config_path, debug):
    """
    buildwatch CLI: report settled file changes below a set of directories.
    """
    try:
        cfg = config.load_config(config_path)
    except Exception as e:
        click.echo(f"Error loading configuration: {e}", err=True)
        ctx.exit(1)
    ctx.obj = {"config": cfg, "config_path": config_path, "debug": debug}


def get_settings(cfg):
    return config.WatchSettings.from_dict(cfg.get("watch", {}))


def get_watch_groups(ctx):
    cfg = ctx.obj.get("config")
    path = config.watch_groups_path(cfg, ctx.obj.get("config_path"))
    return config.load_watch_groups(path, defaults=get_settings(cfg))


@main.command()
@click.pass_context
def show_config(ctx):
    """
    Show the loaded configuration.
    """
    cfg = ctx.obj.get("config")
    if not cfg:
        click.echo("No configuration loaded; using defaults.")
    else:
        click.echo(toml.dumps(cfg))
    click.echo(f"Effective watch settings: {get_settings(cfg)}")


@main.command()
@click.argument("roots", nargs=-1, type=click.Path(file_okay=False))
@click.option("--ignore", "-i", multiple=True, help="Glob pattern of paths to ignore (repeatable).")
@click.option("--group", "-g", "group_names", multiple=True, help="Watch group to run (repeatable).")
@click.option("--debounce-ms", type=click.IntRange(min=0), default=None, help="Quiet window in milliseconds.")
@click.option("--lookback", type=click.FloatRange(min=0), default=None, help="Report changes this many seconds before start.")
@click.option("--polling/--no-polling", default=None, help="Poll instead of using native file events.")
@click.pass_context
def watch(ctx, roots, ignore, group_names, debounce_ms, lookback, polling):
    """
    Watch ROOTS (or configured watch groups) and print each settled change.

    One path is printed per line on stdout; logs go to stderr.
    """
    cfg = ctx.obj.get("config")
    configure_logging(cfg, ctx.obj.get("config_path"), debug=ctx.obj.get("debug"))
    overrides = {"debounce_ms": debounce_ms, "lookback_seconds": lookback, "polling": polling}

    targets = []
    if roots:
        targets.append(("cli", roots, ignore, get_settings(cfg).replace(**overrides)))
    if group_names or not roots:
        try:
            groups = get_watch_groups(ctx)
        except (OSError, ValueError, yaml.YAMLError) as e:
            if group_names:
                click.echo(f"Error loading watch groups configuration: {e}", err=True)
                ctx.exit(1)
            groups = []
        by_name = {group.name: group for group in groups}
        unknown = [name for name in group_names if name not in by_name]
        if unknown:
            click.echo(f"Unknown watch group(s): {', '.join(unknown)}", err=True)
            ctx.exit(1)
        for group in (by_name[name] for name in group_names) if group_names else groups:
            targets.append((group.name, group.roots, group.ignore + tuple(ignore), group.settings.replace(**overrides)))

    if not targets:
        click.echo("Nothing to watch: pass ROOTS or configure watch groups.", err=True)
        ctx.exit(1)

    echo_lock = threading.Lock()

    def react(path):
        with echo_lock:
            click.echo(path)

    sessions = []
    try:
        for name, target_roots, patterns, settings in targets:
            start = session_module.watch(target_roots, patterns, settings=settings, name=name)
            sessions.append(start(react))
    except WatchError as e:
        for s in sessions:
            s.cancel()
        click.echo(f"Error: {e}", err=True)
        ctx.exit(2)

    try:
        while any(s.active for s in sessions):
            time.sleep(0.5)
    except KeyboardInterrupt:
        pass
    finally:
        for s in sessions:
            s.cancel()

    if any(s.terminal_error for s in sessions):
        ctx.exit(1)


@main.command()
@click.argument("patterns", nargs=-1, required=True)
@click.option("--path", "-p", "paths", multiple=True, help="Relative path to test (repeatable).")
@click.option("--ignore-case", is_flag=True, help="Match case-insensitively.")
@click.pass_context
def check(ctx, patterns, paths, ignore_case):
    """
    Compile ignore PATTERNS and show which paths they ignore.
    """
    try:
        compiled = matcher.compile(patterns, case_sensitive=not ignore_case)
    except InvalidPatternError as e:
        click.echo(f"Error: {e}", err=True)
        ctx.exit(2)

    click.echo(f"{len(compiled)} pattern(s) compiled.")
    if not paths:
        return

    table = Table(title="Ignore Check")
    table.add_column("Path", style="cyan")
    table.add_column("Ignored", style="magenta")
    table.add_column("Pattern")
    for path in paths:
        pattern = compiled.match(path)
        table.add_row(path, "yes" if pattern else "no", pattern or "")
    Console().print(table)


@main.command()
@click.pass_context
def groups(ctx):
    """
    List the configured watch groups.
    """
    try:
        watch_groups = get_watch_groups(ctx)
    except (OSError, ValueError, yaml.YAMLError) as e:
        click.echo(f"Error loading watch groups configuration: {e}", err=True)
        ctx.exit(1)

    if not watch_groups:
        click.echo("No watch groups configured.")
        return

    table = Table(title="Watch Groups")
    table.add_column("Name", style="cyan")
    table.add_column("Roots", style="magenta")
    table.add_column("Ignore")
    table.add_column("Debounce (ms)")
    for group in watch_groups:
        table.add_row(
            group.name,
            ", ".join(group.roots),
            ", ".join(group.ignore),
            str(group.settings.debounce_ms),
        )
    Console().print(table)


if __name__ == "__main__":
    main()
