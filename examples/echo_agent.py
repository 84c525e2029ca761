#!/usr/bin/env python3
"""Minimal A2A agent example.

Serves two workflows:

* ``/agents/echo`` echoes ``text`` back
* ``/agents/greeting`` builds a greeting, uppercases it when ``shout`` is set

Run::

    python examples/echo_agent.py --port 8080 --auth-token secret

then::

    curl -s localhost:8080/.well-known/agent.json
    curl -s -H 'Authorization: Bearer secret' -d '{"text": "hi"}' localhost:8080/agents/echo
"""

from __future__ import annotations

import argparse
from typing import Sequence

from a2a_workflows import A2AServer, ServerSettings, Workflow


class Echo(Workflow):
    description = "Echoes its input"

    @classmethod
    def define(cls, w):
        w.task("echo").input("text").output("text").process(lambda ctx: ctx["text"])


class Greeting(Workflow):
    description = "Greets someone by name"

    @classmethod
    def define(cls, w):
        w.task("greet", input="name", output="greeting").process(
            lambda ctx: f"Hello, {ctx.get('name') or 'world'}!"
        )
        w.task("shout", input="greeting", output="greeting").run_if(
            lambda ctx: bool(ctx.get("shout"))
        ).process(lambda ctx: ctx["greeting"].upper())

        @w.after_all
        def stamp(ctx):
            ctx["served_by"] = cls.name


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Serve the example echo/greeting agent.")
    parser.add_argument("--host", default=None)
    parser.add_argument("--port", type=int, default=None)
    parser.add_argument("--auth-token", default=None)
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(argv)

    settings = ServerSettings(agent_name="Echo Agent")
    settings.setup_logging()

    server = A2AServer(
        host=args.host,
        port=args.port,
        auth_token=args.auth_token,
        settings=settings,
    )
    server.register_workflow(Echo)
    server.register_workflow(Greeting)
    server.start()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
