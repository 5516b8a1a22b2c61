"""CLI commands for unbind."""

import json
from datetime import datetime

import click

from unbind import logging as ulog
from unbind.commands import CommandResponse, get_port_info, kill_process, scan_ports
from unbind.config import Config, apply_filter
from unbind.models import PortRecord
from unbind.scanner import Scanner
from unbind.storage import (
    DatabaseNotAvailable,
    add_favorite,
    add_kill_history,
    clear_kill_history,
    get_favorite_labels,
    get_favorites,
    get_kill_history,
    open_database,
    remove_favorite,
    require_database,
    update_favorite_label,
)


def configure_logging(config: Config) -> None:
    """Send structlog events to the rotating JSON log file."""
    ulog.configure(config, source="cli")


def _scanner(config: Config) -> Scanner:
    return Scanner.for_host(command_timeout=config.scan.command_timeout)


def _echo_json(data: dict | list) -> None:
    click.echo(json.dumps(data, indent=2))


def _print_records(records: list[PortRecord], labels: dict[int, str]) -> None:
    click.echo(
        f"{'Port':>6}  {'Proto':5}  {'Address':24}  {'PID':>7}  {'Process':20}  Favorite"
    )
    click.echo("-" * 80)
    for r in records:
        click.echo(
            f"{r.port:>6}  {r.protocol.value:5}  {r.local_address[:24]:24}  {r.pid:>7}  "
            f"{r.process_name[:20]:20}  {labels.get(r.port, '')}"
        )


def _favorite_labels(config: Config) -> dict[int, str]:
    if not config.db_path.exists():
        return {}
    with open_database(config.db_path) as conn:
        return get_favorite_labels(conn)


@click.group()
@click.version_option(package_name="unbind")
@click.pass_context
def main(ctx: click.Context) -> None:
    """Find what is listening on your ports, and free them."""
    try:
        config = Config.load()
    except ValueError as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)
    configure_logging(config)
    ctx.obj = config


@main.command()
@click.option("--json", "as_json", is_flag=True, help="Print the JSON response envelope")
@click.option("--all", "show_all", is_flag=True, help="Ignore the configured filter")
@click.pass_obj
def scan(config: Config, as_json: bool, show_all: bool) -> None:
    """List listening ports and their owning processes."""
    response = scan_ports(_scanner(config))

    if not response.success:
        if as_json:
            _echo_json(response.to_dict())
        else:
            ulog.scan_failed(response.error or "")
        raise SystemExit(1)

    records = response.data or []
    shown = records if show_all else apply_filter(records, config.filter)

    if as_json:
        _echo_json(CommandResponse.ok(shown).to_dict())
        return

    if not shown:
        click.echo("No listening ports.")
        return

    _print_records(shown, _favorite_labels(config))
    ulog.scan_summary(len(shown), len(records))


@main.command()
@click.argument("port", type=click.IntRange(0, 65535))
@click.option("--json", "as_json", is_flag=True, help="Print the JSON response envelope")
@click.pass_obj
def info(config: Config, port: int, as_json: bool) -> None:
    """Show the process listening on PORT."""
    response = get_port_info(port, _scanner(config))

    if as_json:
        _echo_json(response.to_dict())
        if not response.success:
            raise SystemExit(1)
        return

    if not response.success:
        ulog.scan_failed(response.error or "")
        raise SystemExit(1)

    record = response.data
    if record is None:
        ulog.no_listener(port)
        return

    click.echo(f"Port: {record.port}")
    click.echo(f"Protocol: {record.protocol.value}")
    click.echo(f"Address: {record.local_address}")
    click.echo(f"PID: {record.pid}")
    click.echo(f"Process: {record.process_name}")
    click.echo(f"State: {record.state}")
    label = _favorite_labels(config).get(record.port)
    if label:
        click.echo(f"Favorite: {label}")


@main.command()
@click.argument("pid", type=click.IntRange(0, 0xFFFFFFFF))
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation prompt")
@click.pass_obj
def kill(config: Config, pid: int, yes: bool) -> None:
    """Force-kill the process with PID."""
    if not yes:
        click.confirm(f"Force-kill process {pid}?", abort=True)

    response = kill_process(pid, _scanner(config))
    if not response.success:
        ulog.kill_failed(pid, response.error or "")
        raise SystemExit(1)

    ulog.process_killed(str(pid), pid)


@main.command()
@click.argument("port", type=click.IntRange(0, 65535))
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation prompt")
@click.pass_obj
def free(config: Config, port: int, yes: bool) -> None:
    """Kill whatever is listening on PORT and record it in history."""
    scanner = _scanner(config)

    lookup = get_port_info(port, scanner)
    if not lookup.success:
        ulog.scan_failed(lookup.error or "")
        raise SystemExit(1)

    record = lookup.data
    if record is None:
        ulog.no_listener(port)
        raise SystemExit(1)
    if record.pid == 0:
        ulog.owner_unknown(port)
        raise SystemExit(1)

    if not yes:
        click.confirm(
            f"Force-kill {record.process_name} (PID {record.pid}) on port {port}?",
            abort=True,
        )

    response = kill_process(record.pid, scanner)
    if not response.success:
        ulog.kill_failed(record.pid, response.error or "")
        raise SystemExit(1)

    with open_database(config.db_path) as conn:
        add_kill_history(
            conn,
            port=record.port,
            pid=record.pid,
            process_name=record.process_name,
            max_entries=config.history.max_entries,
        )
    ulog.process_killed(record.process_name, record.pid, record.port)


@main.group()
def favorites() -> None:
    """Manage favorite ports."""
    pass


@favorites.command("list")
@click.pass_obj
def favorites_list(config: Config) -> None:
    """List favorite ports."""
    try:
        with require_database(config.db_path) as conn:
            favs = get_favorites(conn)
    except DatabaseNotAvailable:
        return

    if not favs:
        click.echo("No favorites.")
        return

    for fav in favs:
        click.echo(f"{fav['port']:>6}  {fav['label']}")


@favorites.command("add")
@click.argument("port", type=click.IntRange(0, 65535))
@click.argument("label")
@click.pass_obj
def favorites_add(config: Config, port: int, label: str) -> None:
    """Save PORT as a favorite named LABEL."""
    with open_database(config.db_path) as conn:
        add_favorite(conn, port, label)
    ulog.favorite_saved(port, label)


@favorites.command("rename")
@click.argument("port", type=click.IntRange(0, 65535))
@click.argument("label")
@click.pass_obj
def favorites_rename(config: Config, port: int, label: str) -> None:
    """Change the label of favorite PORT."""
    with open_database(config.db_path) as conn:
        found = update_favorite_label(conn, port, label)
    if not found:
        click.echo(f"Error: Port {port} is not a favorite", err=True)
        raise SystemExit(1)
    ulog.favorite_saved(port, label)


@favorites.command("remove")
@click.argument("port", type=click.IntRange(0, 65535))
@click.pass_obj
def favorites_remove(config: Config, port: int) -> None:
    """Remove PORT from favorites."""
    with open_database(config.db_path) as conn:
        found = remove_favorite(conn, port)
    if not found:
        click.echo(f"Error: Port {port} is not a favorite", err=True)
        raise SystemExit(1)
    ulog.favorite_removed(port)


@main.command()
@click.option("--clear", is_flag=True, help="Delete all history")
@click.option("--json", "as_json", is_flag=True, help="Print history as JSON")
@click.pass_obj
def history(config: Config, clear: bool, as_json: bool) -> None:
    """Show processes killed with 'free' or from the dashboard."""
    try:
        with require_database(config.db_path) as conn:
            if clear:
                ulog.history_cleared(clear_kill_history(conn))
                return
            entries = get_kill_history(conn, limit=config.history.max_entries)
    except DatabaseNotAvailable:
        return

    if as_json:
        _echo_json(
            [
                {
                    "port": e["port"],
                    "pid": e["pid"],
                    "process_name": e["process_name"],
                    "killed_at": datetime.fromtimestamp(e["killed_at"]).isoformat(),
                }
                for e in entries
            ]
        )
        return

    if not entries:
        click.echo("No kills recorded.")
        return

    click.echo(f"{'Killed At':19}  {'Port':>6}  {'PID':>7}  Process")
    click.echo("-" * 60)
    for e in entries:
        killed_at = datetime.fromtimestamp(e["killed_at"]).strftime("%Y-%m-%d %H:%M:%S")
        click.echo(f"{killed_at:19}  {e['port']:>6}  {e['pid']:>7}  {e['process_name']}")


@main.command()
@click.pass_obj
def tui(config: Config) -> None:
    """Launch the interactive port table."""
    from unbind.tui.app import run_tui

    run_tui(config)


@main.group("config")
def config_group() -> None:
    """Manage configuration."""
    pass


@config_group.command("show")
@click.pass_obj
def config_show(cfg: Config) -> None:
    """Display current configuration."""
    click.echo(f"Config file: {cfg.config_path}")
    click.echo(f"Exists: {cfg.config_path.exists()}")
    click.echo()
    click.echo("[filter]")
    click.echo(f"  min_port = {cfg.filter.min_port}")
    click.echo(f"  max_port = {cfg.filter.max_port}")
    click.echo(f"  process_name = {cfg.filter.process_name!r}")
    click.echo(f"  protocols = {cfg.filter.protocols}")
    click.echo()
    click.echo("[scan]")
    click.echo(f"  command_timeout = {cfg.scan.command_timeout}")
    click.echo()
    click.echo("[history]")
    click.echo(f"  max_entries = {cfg.history.max_entries}")


@config_group.command("edit")
@click.pass_obj
def config_edit(cfg: Config) -> None:
    """Open config file in editor."""
    import os
    import subprocess

    if not cfg.config_path.exists():
        cfg.save()
        ulog.config_created(str(cfg.config_path))

    editor = os.environ.get("EDITOR", "nano")
    subprocess.run([editor, str(cfg.config_path)])


@config_group.command("reset")
@click.confirmation_option(prompt="Reset config to defaults?")
def config_reset() -> None:
    """Reset configuration to defaults."""
    cfg = Config()
    cfg.save()
    click.echo(f"Config reset to defaults at {cfg.config_path}")


if __name__ == "__main__":
    main()
