"""Show daemon status."""

import typer

from vici_client.app_context import use_context
from vici_client.dial import is_connectable
from vici_client.errors import ViciError
from vici_client.session import Session


def status(ctx: typer.Context) -> None:
    """Show whether the daemon is reachable and which version it runs."""
    app = use_context(ctx)

    if not is_connectable(app.cfg.socket_path):
        app.out.print_status(reachable=False, version=None)
        return

    try:
        with Session.connect(app.cfg) as session:
            version = session.command("version")
    except ViciError as e:
        app.out.print_error_and_exit(e.code, str(e))
    app.out.print_status(reachable=True, version=version)
