"""
API module for gateway discovery and configuration
"""

from .main_api import ConfiguratorAPI
from .system_routes import create_system_routes
from .discovery_routes import create_discovery_routes
from .gateway_routes import create_gateway_routes, gateway_http_error
from .setup_routes import create_setup_routes

__all__ = ['ConfiguratorAPI', 'create_system_routes', 'create_discovery_routes',
           'create_gateway_routes', 'gateway_http_error', 'create_setup_routes']
