"""CLI control surface for a daemon group, using typer."""

from __future__ import annotations

import logging
import os
import subprocess
import sys
from pathlib import Path
from typing import Optional, Sequence

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from daemonspawn.config import ConfigError, DaemonConfig, load_config, save_config
from daemonspawn.daemon import detached_instance_index
from daemonspawn.services.supervisor import Supervisor
from daemonspawn.storage.models import StartReport, StopReport
from daemonspawn.storage.pidfile import write_pid
from daemonspawn.utils.formatting import (
    format_start_report,
    format_status_report,
    format_stop_report,
)
from daemonspawn.utils.safelog import LOG_FORMAT
from daemonspawn.version import __version__
from daemonspawn.worker import Worker

console = Console()

_PASSTHROUGH = {"allow_extra_args": True, "ignore_unknown_options": True}


def _print(lines: Sequence[str], style: str) -> None:
    for line in lines:
        console.print(f"[{style}]{escape(line)}[/{style}]", soft_wrap=True)


def build_app(worker: Worker, config: DaemonConfig) -> typer.Typer:
    """Build the start/stop/restart/status application for one daemon group."""
    app = typer.Typer(
        name=config.name,
        help=f"Control the {config.name} daemon.",
        add_completion=False,
        no_args_is_help=True,
    )
    state: dict[str, DaemonConfig] = {"config": config}

    def supervisor() -> Supervisor:
        return Supervisor(worker, state["config"])

    def print_start(report: StartReport) -> None:
        _print(format_start_report(state["config"].name, report), "green" if report.ok else "red")
        if not report.ok:
            raise typer.Exit(1)

    def print_stop(report: StopReport) -> None:
        cfg = state["config"]
        style = "red" if not report.ok else "yellow" if report.no_pidfiles else "green"
        _print(format_stop_report(cfg.name, report, cfg.kill_timeout), style)
        if not report.ok:
            raise typer.Exit(1)

    def run_detached_instance(args: list[str]) -> None:
        """Run the instance body when this process is a copy made by spawn_detached()."""
        index = detached_instance_index()
        if index is None:
            return
        handles = supervisor().handles()
        if index >= len(handles):
            raise typer.Exit(1)
        write_pid(handles[index].pid_file, os.getpid())
        raise typer.Exit(supervisor().run_instance(handles[index], args))

    def check_working_dir() -> None:
        try:
            state["config"].resolved_working_dir()
        except ConfigError as e:
            console.print(f"[red]{escape(str(e))}[/red]")
            raise typer.Exit(1)

    @app.callback()
    def main(
        config_file: Optional[Path] = typer.Option(None, "--config", "-c", help="TOML file overriding the daemon settings"),
        verbose: bool = typer.Option(False, "--verbose", "-v", help="Log supervisor activity"),
    ) -> None:
        logging.basicConfig(level=logging.DEBUG if verbose else logging.WARNING, format=LOG_FORMAT)
        try:
            state["config"] = load_config(config, config_file)
        except (OSError, ValueError) as e:
            console.print(f"[red]Invalid configuration: {escape(str(e))}[/red]")
            raise typer.Exit(1)

    @app.command(context_settings=_PASSTHROUGH)
    def start(ctx: typer.Context) -> None:
        """Start the daemons; extra arguments are passed to the worker."""
        args = list(ctx.args)
        run_detached_instance(args)
        check_working_dir()
        print_start(supervisor().start(args))

    @app.command()
    def stop() -> None:
        """Stop the running daemons."""
        print_stop(supervisor().stop())

    @app.command(context_settings=_PASSTHROUGH)
    def restart(ctx: typer.Context) -> None:
        """Stop, then start the daemons again."""
        args = list(ctx.args)
        run_detached_instance(args)
        check_working_dir()
        stop_report, start_report = supervisor().restart(args)
        print_stop(stop_report)
        print_start(start_report)

    @app.command()
    def status() -> None:
        """Check whether the daemons are running."""
        report = supervisor().status()
        _print(format_status_report(state["config"].name, report), "green" if report.pids else "dim")

    @app.command("config")
    def show_config(
        save: Optional[Path] = typer.Option(None, "--save", help="Write the effective settings to a TOML file"),
    ) -> None:
        """View the effective configuration."""
        cfg = state["config"]
        if save is not None:
            save_config(cfg, save)
            console.print(f"[green]Configuration saved to {escape(str(save))}[/green]")
            return

        table = Table(title=f"{cfg.name} configuration")
        table.add_column("Key", style="cyan")
        table.add_column("Value", style="green")
        for key, value in cfg.to_dict().items():
            if key == "log_mode":
                value = oct(value)
            table.add_row(key, escape(str(value)))
        if cfg.log_path is None and cfg.log_file is not None:
            table.add_row("log_file", "(open stream)")
        for index in range(cfg.processes):
            table.add_row(f"pid_file[{index}]", escape(str(cfg.pid_path(index))))
        console.print(table)

    @app.command()
    def logs(
        lines: int = typer.Option(50, "--lines", "-n", help="Number of lines"),
        follow: bool = typer.Option(False, "--follow", "-f", help="Follow log output"),
    ) -> None:
        """View daemon logs."""
        log_path = state["config"].log_path
        if log_path is None or not log_path.exists():
            console.print("[dim]No log file found.[/dim]")
            return

        if follow:
            try:
                subprocess.run(["tail", "-f", "-n", str(lines), str(log_path)])
            except KeyboardInterrupt:
                pass
        else:
            content = log_path.read_text(errors="replace")
            log_lines = content.strip().split("\n")
            for line in log_lines[-lines:]:
                console.print(escape(line), soft_wrap=True)

    @app.command()
    def version() -> None:
        """Show version information."""
        console.print(f"daemonspawn v{__version__}")
        console.print(f"Python: {sys.version.split()[0]}")

    return app


def spawn(worker: Worker, config: DaemonConfig, argv: Sequence[str] | None = None) -> None:
    """Run the control surface for ``worker``: the entry point of a daemon script."""
    app = build_app(worker, config)
    app(args=None if argv is None else list(argv), prog_name=Path(sys.argv[0]).name or config.name)
