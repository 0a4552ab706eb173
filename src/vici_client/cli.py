"""CLI entry point for vici-client."""

from pathlib import Path
from typing import Annotated

import typer
from mm_clikit import TyperPlus

from vici_client.app_context import AppContext
from vici_client.commands.call import call
from vici_client.commands.listen import listen
from vici_client.commands.status import status
from vici_client.commands.stream import stream
from vici_client.config import Config
from vici_client.log import setup_logging
from vici_client.output import Output

app = TyperPlus(package_name="vici-client")


@app.callback()
def callback(
    ctx: typer.Context,
    *,
    json_output: Annotated[bool, typer.Option("--json", help="Output results as JSON.")] = False,
    socket_path: Annotated[Path | None, typer.Option("--socket", help="Daemon socket path.")] = None,
    config_path: Annotated[Path | None, typer.Option("--config", help="Configuration file path.")] = None,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Log protocol traffic.")] = False,
) -> None:
    """Talk to the IKE daemon over its VICI control socket."""
    cfg = Config.build(config_path, socket_path)
    setup_logging(cfg.log_path, verbose=verbose)
    ctx.obj = AppContext(out=Output(json_mode=json_output), cfg=cfg)


# Commands
app.command(aliases=["c"])(call)
app.command(aliases=["s"])(stream)

# Events
app.command(aliases=["l"])(listen)

# Daemon
app.command(aliases=["h"])(status)
