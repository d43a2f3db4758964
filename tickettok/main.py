"""Main entry point - orchestrates all components."""

import asyncio
import logging
import os
import signal
from pathlib import Path
from typing import Optional

import uvicorn
import yaml

from .actions import install_all_hooks
from .agent_manager import AgentManager
from .context import RuntimeContext
from .models import AgentStatus
from .server import create_app
from .status_monitor import StatusMonitor
from .store import Store

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "config.yaml"
CONFIG_ENV_VAR = "TICKETTOK_CONFIG"


def resolve_config_path(config_path: Optional[str] = None) -> str:
    """Explicit path, then $TICKETTOK_CONFIG, then ./config.yaml."""
    return config_path or os.environ.get(CONFIG_ENV_VAR) or DEFAULT_CONFIG_PATH


def load_config(config_path: str = DEFAULT_CONFIG_PATH) -> dict:
    """Load configuration from YAML file."""
    path = Path(config_path)

    if not path.exists():
        logger.warning(f"Config file not found: {config_path}, using defaults")
        return {}

    with open(path) as f:
        return yaml.safe_load(f) or {}


def setup_logging(level: int = logging.INFO):
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


class TicketTokApp:
    """Main application orchestrator."""

    def __init__(self, config: dict, context: Optional[RuntimeContext] = None):
        self.config = config

        # Server config
        self.host = config.get("server", {}).get("host", "127.0.0.1")
        self.port = config.get("server", {}).get("port", 8421)

        self.context = context or RuntimeContext.from_config(config)
        self.install_hooks = config.get("hooks", {}).get("install", True)

        # StoreLoadError propagates: a corrupt state file must not be overwritten
        self.store = Store(self.context.state_file, default_backend_id=self.context.registry.default_id)
        self.manager = AgentManager(self.context)
        self.monitor = StatusMonitor(
            self.store,
            self.manager,
            self.context.registry,
            config=config,
        )
        self.monitor.set_status_callback(self._handle_status_change)

        self.app = create_app(
            store=self.store,
            manager=self.manager,
            monitor=self.monitor,
            config=config,
        )
        self._server: Optional[uvicorn.Server] = None

    async def _handle_status_change(self, agent_id: str, status: AgentStatus):
        """Log status changes that need the operator's attention."""
        if status == AgentStatus.WAITING:
            agent = self.store.get(agent_id)
            name = agent.name if agent else agent_id
            logger.info(f"Agent {name} is waiting for input")

    def check_dependencies(self):
        for backend in self.context.registry:
            missing = backend.check_deps()
            if missing:
                logger.warning(f"{backend.name} CLI not found: {missing}")

    async def start(self):
        """Start all components."""
        logger.info("Starting TicketTok...")

        self.check_dependencies()
        if self.install_hooks:
            await asyncio.to_thread(install_all_hooks, self.context.registry)

        await self.monitor.start()

        config = uvicorn.Config(
            self.app,
            host=self.host,
            port=self.port,
            log_level="info",
        )
        self._server = uvicorn.Server(config)

        logger.info(f"Starting server on http://{self.host}:{self.port}")

        try:
            await self._server.serve()
        finally:
            await self.stop()

    def request_shutdown(self):
        if self._server is not None:
            self._server.should_exit = True

    async def stop(self):
        """Stop all components. Agent tmux sessions keep running."""
        logger.info("Stopping TicketTok...")
        await self.monitor.stop()
        self.manager.close_all()
        logger.info("Shutdown complete")


def setup_signal_handlers(app: TicketTokApp):
    """Set up signal handlers for graceful shutdown."""
    loop = asyncio.get_running_loop()

    def signal_handler(sig):
        logger.info(f"Received signal {sig.name}, shutting down...")
        app.request_shutdown()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, signal_handler, sig)


async def main(config_path: Optional[str] = None):
    """Main entry point."""
    setup_logging()

    config = load_config(resolve_config_path(config_path))

    app = TicketTokApp(config)
    setup_signal_handlers(app)
    await app.start()


def run(config_path: Optional[str] = None):
    """Entry point for console script."""
    asyncio.run(main(config_path))


if __name__ == "__main__":
    run()
