"""Issue a command that streams its results as events."""

from typing import Annotated

import typer

from vici_client.app_context import use_context
from vici_client.errors import ViciError
from vici_client.params import parse_params
from vici_client.session import Session


def stream(
    ctx: typer.Context,
    command: Annotated[str, typer.Argument(help="Command name, e.g. list-sas.")],
    event: Annotated[str, typer.Argument(help="Event carrying the results, e.g. list-sa.")],
    params: Annotated[list[str] | None, typer.Argument(help="Request fields as key=value.")] = None,
) -> None:
    """Run a streamed command and print the events it produces."""
    app = use_context(ctx)
    try:
        request = parse_params(params or [])
    except ValueError as e:
        app.out.print_error_and_exit("invalid_params", str(e))

    try:
        with Session.connect(app.cfg) as session:
            messages = session.streamed_command(command, event, request)
    except ViciError as e:
        app.out.print_error_and_exit(e.code, str(e))
    app.out.print_streamed(event, messages)
