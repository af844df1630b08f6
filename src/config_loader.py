"""
Configuration loader for the USR Gateway Configurator
Loads and validates configuration from YAML files and sets up logging
"""

import yaml
import logging
from typing import Dict, Any
from pathlib import Path
from datetime import datetime
import pytz

logger = logging.getLogger(__name__)

# Section name -> default values applied when a key is missing
DEFAULTS: Dict[str, Dict[str, Any]] = {
    'discovery': {
        'port': 1901,
        'timeout_ms': 3000,
        'known_gateway_ips': ['192.168.0.7', '192.168.1.200'],
        'probe_timeout': 3,
        'max_concurrent_probes': 5,
        'scan_on_startup': True,
    },
    'gateway': {
        'username': 'admin',
        'password': 'admin',
        'request_timeout': 10,
        'upload_timeout': 30,
        'retry_attempts': 3,
        'retry_delay_seconds': 0.5,
    },
    'udp_config': {
        'static_ip': '192.168.1.200',
        'gateway': '192.168.1.1',
        'netmask': '255.255.255.0',
        'model': 'USR-N510',
        'ack_timeout_seconds': 3,
        'save_delay_seconds': 0.5,
    },
    'setup': {
        'factory_default_ip': '192.168.0.7',
        'static_wait_seconds': 12,
        'static_scan_attempts': 6,
        'dhcp_wait_seconds': 20,
        'dhcp_scan_attempts': 5,
        'scan_interval_seconds': 4,
        'detect_attempts': 5,
        'detect_interval_seconds': 2,
        'ready_attempts': 20,
        'ready_interval_seconds': 1.5,
        'prepare_gateway': True,
    },
    'api': {
        'host': '0.0.0.0',
        'port': 3001,
        'cors_origins': ['*'],
    },
    'logging': {
        'level': 'INFO',
        'file': 'logs/configurator.log',
        'console_output': True,
        'timezone': 'UTC',
    },
}


def load_config(config_path: str = "config/config.yaml") -> Dict[str, Any]:
    """
    Load configuration from YAML file with validation
    """
    try:
        config_file = Path(config_path)
        if not config_file.exists():
            logger.error(f"Configuration file not found: {config_path}")
            raise FileNotFoundError(f"Config file not found: {config_path}")

        with open(config_file, 'r') as f:
            config = yaml.safe_load(f) or {}

        _validate_config(config)
        config = _apply_defaults(config)

        logger.info(f"Configuration loaded from {config_path}")
        return config

    except Exception as e:
        logger.error(f"Failed to load configuration: {e}")
        raise


def _validate_config(config: Dict) -> None:
    """Validate that required configuration sections exist"""
    required_sections = ['discovery', 'gateway']

    for section in required_sections:
        if section not in config or config[section] is None:
            raise ValueError(f"Missing required configuration section: {section}")

    discovery = config['discovery']
    port = discovery.get('port', DEFAULTS['discovery']['port'])
    if not isinstance(port, int) or not 0 < port < 65536:
        raise ValueError(f"discovery.port must be a valid UDP port, got {port!r}")

    timeout_ms = discovery.get('timeout_ms', DEFAULTS['discovery']['timeout_ms'])
    if not isinstance(timeout_ms, (int, float)) or timeout_ms <= 0:
        raise ValueError("discovery.timeout_ms must be a positive number")

    gateway = config['gateway']
    for field in ('username', 'password'):
        value = gateway.get(field)
        if value is not None and not isinstance(value, str):
            raise ValueError(f"gateway.{field} must be a string")

    if 'logging' in config and config['logging']:
        tz_name = config['logging'].get('timezone')
        if tz_name and tz_name not in pytz.all_timezones_set:
            raise ValueError(f"Unknown logging.timezone: {tz_name}")


def _apply_defaults(config: Dict) -> Dict:
    """Apply default values to configuration"""
    for section, defaults in DEFAULTS.items():
        if section not in config or config[section] is None:
            config[section] = {}
        for key, default_value in defaults.items():
            if key not in config[section]:
                config[section][key] = default_value

    return config


class TimezoneFormatter(logging.Formatter):
    """Formatter that renders timestamps in a configured timezone"""

    def __init__(self, fmt=None, tz_name: str = 'UTC'):
        super().__init__(fmt)
        self.tz = pytz.timezone(tz_name)

    def formatTime(self, record, datefmt=None):
        dt = datetime.fromtimestamp(record.created, tz=self.tz)
        if datefmt:
            return dt.strftime(datefmt)
        return dt.strftime('%Y-%m-%d %H:%M:%S %Z')


def setup_logging(config: Dict) -> None:
    """Setup logging based on configuration"""
    log_config = config.get('logging', {})
    level = log_config.get('level', 'INFO')
    tz_name = log_config.get('timezone', 'UTC')

    log_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    formatter = TimezoneFormatter(log_format, tz_name)

    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format=log_format,
        handlers=[]
    )
    root = logging.getLogger()

    if log_config.get('console_output', True):
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(formatter)
        root.addHandler(console_handler)

    log_file = log_config.get('file')
    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    # Per-request access logs are noise next to our own tagged messages
    logging.getLogger('aiohttp.access').setLevel(logging.WARNING)
    logging.getLogger('uvicorn.access').setLevel(logging.WARNING)

    logger.info(f"Logging configured: level={level}, tz={tz_name}, "
                f"console={log_config.get('console_output', True)}, file={log_file}")


def get_sample_config() -> Dict:
    """Return a sample configuration for reference"""
    return {
        "discovery": {
            "port": 1901,
            "timeout_ms": 3000,
            "known_gateway_ips": ["192.168.0.7", "192.168.1.200"],
        },
        "gateway": {
            "username": "admin",
            "password": "admin",
            "request_timeout": 10,
        },
        "udp_config": {
            "static_ip": "192.168.1.200",
            "gateway": "192.168.1.1",
            "netmask": "255.255.255.0",
        },
        "api": {
            "host": "0.0.0.0",
            "port": 3001,
        },
        "logging": {
            "level": "INFO",
            "file": "logs/configurator.log",
            "timezone": "Europe/Rome",
        },
    }
