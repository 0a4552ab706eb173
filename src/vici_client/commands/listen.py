"""Stream daemon events to stdout."""

from typing import Annotated

import typer

from vici_client.app_context import use_context
from vici_client.context import Context
from vici_client.errors import ViciError
from vici_client.session import Session


def listen(
    ctx: typer.Context,
    events: Annotated[list[str], typer.Argument(help="Event names, e.g. log ike-updown.")],
    *,
    count: Annotated[int, typer.Option("--count", "-n", min=0, help="Stop after this many events (0 = until interrupted).")] = 0,
) -> None:
    """Print events as they arrive until interrupted."""
    app = use_context(ctx)
    received = 0
    try:
        with Session.connect(app.cfg) as session, Context() as cancel:
            session.listen(*events, ctx=cancel)
            for event in session.events():
                app.out.print_event(event.name, event.message)
                received += 1
                if count and received >= count:
                    break
    except KeyboardInterrupt:
        pass
    except ViciError as e:
        app.out.print_error_and_exit(e.code, str(e))
