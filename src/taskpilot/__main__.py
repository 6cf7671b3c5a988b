"""Entry point for running the taskpilot chat server.

Usage:
    python -m taskpilot
    python -m taskpilot --port 9000 --project /path/to/project
"""

from __future__ import annotations

import argparse

from taskpilot.config import get_default_data_dir, load_config
from taskpilot.logging import get_logger, setup_logging

log = get_logger()


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(prog="taskpilot", description="Run the taskpilot chat server")
    parser.add_argument("--host", help="Bind address (default from config)")
    parser.add_argument("--port", type=int, help="Port (default from config)")
    parser.add_argument("--project", help="Project root holding .taskpilot/config.yaml")
    args = parser.parse_args(argv)

    config = load_config(project_root=args.project)
    setup_logging(config.logging, data_dir=config.session.data_dir or get_default_data_dir())

    from taskpilot.server.server import run_server

    run_server(config, host=args.host, port=args.port)


if __name__ == "__main__":
    main()
