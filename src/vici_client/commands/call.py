"""Issue a single command."""

from typing import Annotated

import typer

from vici_client.app_context import use_context
from vici_client.errors import ViciError
from vici_client.params import parse_params
from vici_client.session import Session


def call(
    ctx: typer.Context,
    command: Annotated[str, typer.Argument(help="Command name, e.g. version or list-conns.")],
    params: Annotated[list[str] | None, typer.Argument(help="Request fields as key=value.")] = None,
) -> None:
    """Send a command to the daemon and print its response."""
    app = use_context(ctx)
    try:
        request = parse_params(params or [])
    except ValueError as e:
        app.out.print_error_and_exit("invalid_params", str(e))

    try:
        with Session.connect(app.cfg) as session:
            response = session.command(command, request)
        response.check_success()
    except ViciError as e:
        app.out.print_error_and_exit(e.code, str(e))
    app.out.print_response(response)
