"""HTTP server lifecycle."""

from __future__ import annotations

from taskpilot.config import Config
from taskpilot.logging import get_logger

log = get_logger("server")


def run_server(config: Config, *, host: str | None = None, port: int | None = None) -> None:
    """Serve the chat API until interrupted."""
    # Import here to keep the startup path light for library users
    import uvicorn

    from taskpilot.server.routes import create_app

    app = create_app(config)
    bind_host = host or config.server.host
    bind_port = port or config.server.port
    log.info("Serving on http://%s:%d (model=%s)", bind_host, bind_port, config.llm.model)
    if not config.llm.model:
        log.warning("No model configured; set TASKPILOT_MODEL or llm.model in config.yaml")

    uvicorn.run(
        app,
        host=bind_host,
        port=bind_port,
        log_level="warning",
        access_log=False,
    )
