"""
ASGI entry point for uvicorn
Exposes the FastAPI app for `uvicorn asgi:app --app-dir src`
"""

import asyncio
import logging
import os
from pathlib import Path

from config_loader import load_config, setup_logging
from discovery.manager import GatewayDiscovery
from api.main_api import ConfiguratorAPI
from services.setup_workflow import SetupWorkflow

Path("logs").mkdir(exist_ok=True)

config = load_config(os.environ.get('CONFIG_FILE', 'config/config.yaml'))
setup_logging(config)

logger = logging.getLogger(__name__)

logger.info("Initializing application components...")

discovery = GatewayDiscovery(config)
workflow = SetupWorkflow(config, discovery)
api = ConfiguratorAPI(config, discovery, workflow)

app = api.app


@app.on_event("startup")
async def startup_event():
    logger.info("Starting up application...")
    if config['discovery'].get('scan_on_startup', True):
        result = await discovery.discover()
        logger.info(f"Startup scan found {result.success_count} gateway(s)")


@app.on_event("shutdown")
async def shutdown_event():
    """Abandon running setup workflows"""
    logger.info("Shutting down application...")
    tasks = [task for task in workflow.active.values() if not task.done()]
    for task in tasks:
        task.cancel()
    if tasks:
        await asyncio.gather(*tasks, return_exceptions=True)
    logger.info("Application shut down complete")


logger.info("ASGI app ready for uvicorn")
