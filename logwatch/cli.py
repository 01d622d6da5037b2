import asyncio
import json
import logging
import socket
from pathlib import Path
from typing import Iterable, Optional

import typer


app = typer.Typer(help="LogWatch: tail growing game/chat logs and stream new lines to subscribers")


def _send_command(cmd: dict, host: str = "127.0.0.1", port: int = 3000, expect: Iterable[str] = (),
                  timeout: float = 5.0) -> dict:
    """Send one command over the subscriber channel and wait for its reply.

    Broadcast traffic (info, update, ping) arriving first is skipped.
    """
    wanted = set(expect)
    data = (json.dumps(cmd) + "\n").encode()
    try:
        with socket.create_connection((host, port), timeout=timeout) as s:
            s.sendall(data)
            with s.makefile("r", encoding="utf-8") as f:
                for line in f:
                    try:
                        msg = json.loads(line)
                    except json.JSONDecodeError:
                        continue
                    if msg.get("type") in wanted:
                        return msg
    except OSError as e:
        typer.echo(f"error: cannot reach monitor at {host}:{port}: {e}", err=True)
        raise typer.Exit(code=1)
    return {}


@app.command()
def start(
    root: Optional[str] = typer.Option(None, "--root", help="Log directory to watch (defaults to the EVE logs folder)", metavar="PATH"),
    config: Optional[Path] = typer.Option(None, "--config", help="YAML file overriding default settings", metavar="FILE"),
    host: Optional[str] = typer.Option(None, help="Bind host"),
    port: Optional[int] = typer.Option(None, help="Subscriber channel port"),
    http_port: Optional[int] = typer.Option(None, "--http-port", help="HTTP /status and /stream port"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
):
    """Run the monitor in the foreground."""
    from .config import load_settings
    from .runtime import run_monitor

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    settings = load_settings(config, root=root, host=host, port=port, http_port=http_port)
    try:
        asyncio.run(run_monitor(settings))
    except KeyboardInterrupt:
        pass


@app.command("set-path")
def set_path(path: str, host: str = "127.0.0.1", port: int = 3000):
    """Point the running monitor at a different log directory."""
    resp = _send_command({"type": "set-path", "path": path}, host, port, expect=("config-success", "config-error"))
    typer.echo(json.dumps(resp, indent=2))
    if resp.get("type") != "config-success":
        raise typer.Exit(code=1)


@app.command()
def status(host: str = "127.0.0.1", port: int = 3000):
    """Show the watched root and tracked files."""
    resp = _send_command({"type": "status"}, host, port, expect=("status",))
    typer.echo(json.dumps(resp, indent=2))


def main():
    """Entry point for console_scripts."""
    app()


if __name__ == "__main__":
    main()
