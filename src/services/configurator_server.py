"""
Configurator Server - wires configuration, discovery, the setup workflow and the API
"""

import asyncio
import logging
from typing import Optional

import uvicorn

from config_loader import load_config, setup_logging
from discovery.manager import GatewayDiscovery
from api.main_api import ConfiguratorAPI
from services.setup_workflow import SetupWorkflow

logger = logging.getLogger(__name__)


class ConfiguratorServer:
    """Main server: discovery manager, setup workflow runner and local HTTP API"""

    def __init__(self, config_path: str = "config/config.yaml", config: Optional[dict] = None):
        self.config = config if config is not None else load_config(config_path)
        setup_logging(self.config)

        self.discovery = GatewayDiscovery(self.config)
        self.workflow = SetupWorkflow(self.config, self.discovery)
        self.api = ConfiguratorAPI(self.config, self.discovery, self.workflow)

        self.running = False
        self.uvicorn_server: Optional[uvicorn.Server] = None

    async def start(self):
        """Initial scan (if enabled), then serve the API until stopped"""
        logger.info("Starting USR Gateway Configurator...")
        self.running = True

        try:
            if self.config['discovery'].get('scan_on_startup', True):
                result = await self.discovery.discover()
                for device in result.devices:
                    logger.info(f"  - {device.mac} at {device.ip} ({device.family.value}, fw {device.firmware})")

            await self._start_api_server()
        except Exception as e:
            logger.error(f"Server startup failed: {e}")
            await self.stop()
            raise

    async def stop(self):
        """Stop the API server and abandon any running setup workflows"""
        if not self.running:
            return
        logger.info("Stopping server...")
        self.running = False

        if self.uvicorn_server is not None:
            self.uvicorn_server.should_exit = True

        tasks = [task for task in self.workflow.active.values() if not task.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info(f"Cancelled {len(tasks)} running setup workflow(s)")
        logger.info("Server stopped")

    async def _start_api_server(self):
        """Start the FastAPI server"""
        config = uvicorn.Config(
            self.api.app,
            host=self.config['api']['host'],
            port=self.config['api']['port'],
            log_level="info",
            access_log=False  # We handle our own logging
        )

        self.uvicorn_server = uvicorn.Server(config)

        logger.info(f"Starting API server on {self.config['api']['host']}:{self.config['api']['port']}")
        logger.info(f"API documentation: http://localhost:{self.config['api']['port']}/docs")
        logger.info(f"UDP discovery on port {self.config['discovery']['port']}, "
                    f"fallback addresses: {', '.join(self.config['discovery']['known_gateway_ips'])}")

        await self.uvicorn_server.serve()
