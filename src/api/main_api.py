"""
Main FastAPI application setup

Local HTTP API for the USR Gateway Configurator
Serves discovery, gateway read/write and the setup workflow to the browser UI
"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from typing import Dict
import logging

from discovery.manager import GatewayDiscovery
from services.setup_workflow import SetupWorkflow

# Import modular route factories
from .system_routes import create_system_routes
from .discovery_routes import create_discovery_routes
from .gateway_routes import create_gateway_routes
from .setup_routes import create_setup_routes

logger = logging.getLogger(__name__)


class ConfiguratorAPI:
    """Local HTTP API for gateway discovery and configuration"""

    def __init__(self, config: Dict, discovery: GatewayDiscovery, workflow: SetupWorkflow):
        self.config = config
        self.discovery = discovery
        self.workflow = workflow
        self.app = FastAPI(
            title="USR Gateway Configurator",
            description="Local API for discovering and configuring USR-IOT N510/N720 gateways",
            version=config.get('api', {}).get('version', '1.0.0')
        )
        self._setup_middleware()
        self._setup_routes()

    def _setup_middleware(self):
        origins = self.config.get('api', {}).get('cors_origins', ['*'])
        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=origins,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    def _setup_routes(self):
        """Setup FastAPI routes using modular approach"""
        self.app.include_router(create_system_routes(
            self.config, self.discovery, self.workflow, self.discovery.interfaces_provider))
        self.app.include_router(create_discovery_routes(self.config, self.discovery))
        self.app.include_router(create_gateway_routes(self.config))
        self.app.include_router(create_setup_routes(self.workflow))
        logger.debug(f"Registered {len(self.app.routes)} routes")
