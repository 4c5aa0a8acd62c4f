"""
Configuration Management

Handles loading configuration from environment variables and config files.
"""

import os
from pathlib import Path
from dataclasses import dataclass, field
from typing import List, Optional
import json

from dotenv import load_dotenv

FRAMING_MODES = ('combined', 'alternating')


@dataclass
class Config:
    """
    SecureShare Node Configuration.

    Configuration priority (highest to lowest):
    1. Environment variables (SECURESHARE_*)
    2. Config file (config.json)
    3. Default values

    Chunk size (16 KiB) and nonce length (12 bytes) are protocol
    constants, not settings.
    """
    # Relay (rendezvous server)
    relay_host: str = '127.0.0.1'
    relay_port: int = 8765

    # Direct channel
    channel_host: str = '0.0.0.0'
    advertise_hosts: List[str] = field(default_factory=lambda: ['127.0.0.1'])
    framing: str = 'combined'

    # API
    api_host: str = '127.0.0.1'
    api_port: int = 8080

    # Storage
    output_dir: Path = field(default_factory=lambda: Path('./received'))

    # Flow control
    max_buffered_amount: int = 1024 * 1024  # 1MB

    # Timeouts (seconds)
    register_timeout: float = 5.0
    connect_timeout: float = 30.0

    # Logging
    log_level: str = 'INFO'

    def __post_init__(self):
        if self.framing not in FRAMING_MODES:
            raise ValueError(
                f"Unknown framing mode {self.framing!r} (expected one of {FRAMING_MODES})"
            )
        self.output_dir = Path(self.output_dir)

    @classmethod
    def from_env(cls) -> 'Config':
        """Load configuration from environment variables."""
        load_dotenv()

        config = cls()

        # Relay
        config.relay_host = os.getenv('SECURESHARE_RELAY_HOST', config.relay_host)
        config.relay_port = int(os.getenv('SECURESHARE_RELAY_PORT', config.relay_port))

        # Direct channel
        config.channel_host = os.getenv('SECURESHARE_CHANNEL_HOST', config.channel_host)
        advertise = os.getenv('SECURESHARE_ADVERTISE_HOSTS', '')
        if advertise:
            config.advertise_hosts = [h.strip() for h in advertise.split(',') if h.strip()]
        config.framing = os.getenv('SECURESHARE_FRAMING', config.framing)

        # API
        config.api_host = os.getenv('SECURESHARE_API_HOST', config.api_host)
        config.api_port = int(os.getenv('SECURESHARE_API_PORT', config.api_port))

        # Storage
        output_dir = os.getenv('SECURESHARE_OUTPUT_DIR')
        if output_dir:
            config.output_dir = Path(output_dir)

        # Flow control / timeouts
        config.max_buffered_amount = int(
            os.getenv('SECURESHARE_MAX_BUFFERED', config.max_buffered_amount)
        )
        config.register_timeout = float(
            os.getenv('SECURESHARE_REGISTER_TIMEOUT', config.register_timeout)
        )
        config.connect_timeout = float(
            os.getenv('SECURESHARE_CONNECT_TIMEOUT', config.connect_timeout)
        )

        # Logging
        config.log_level = os.getenv('SECURESHARE_LOG_LEVEL', config.log_level)

        config.__post_init__()
        return config

    @classmethod
    def from_file(cls, path: Path) -> 'Config':
        """Load configuration from a JSON file."""
        if not path.exists():
            return cls()

        with open(path) as f:
            data = json.load(f)

        config = cls()

        config.relay_host = data.get('relay_host', config.relay_host)
        config.relay_port = data.get('relay_port', config.relay_port)
        config.channel_host = data.get('channel_host', config.channel_host)
        config.advertise_hosts = list(data.get('advertise_hosts', config.advertise_hosts))
        config.framing = data.get('framing', config.framing)
        config.api_host = data.get('api_host', config.api_host)
        config.api_port = data.get('api_port', config.api_port)

        if 'output_dir' in data:
            config.output_dir = Path(data['output_dir'])

        config.max_buffered_amount = data.get('max_buffered_amount', config.max_buffered_amount)
        config.register_timeout = data.get('register_timeout', config.register_timeout)
        config.connect_timeout = data.get('connect_timeout', config.connect_timeout)
        config.log_level = data.get('log_level', config.log_level)

        config.__post_init__()
        return config

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            'relay_host': self.relay_host,
            'relay_port': self.relay_port,
            'channel_host': self.channel_host,
            'advertise_hosts': list(self.advertise_hosts),
            'framing': self.framing,
            'api_host': self.api_host,
            'api_port': self.api_port,
            'output_dir': str(self.output_dir),
            'max_buffered_amount': self.max_buffered_amount,
            'register_timeout': self.register_timeout,
            'connect_timeout': self.connect_timeout,
            'log_level': self.log_level,
        }

    def save(self, path: Path):
        """Save configuration to a JSON file."""
        with open(path, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)


def load_config(config_path: Optional[Path] = None) -> Config:
    """
    Load configuration from file and environment.

    Environment variables override file settings.
    """
    config = Config()

    if config_path and config_path.exists():
        config = Config.from_file(config_path)

    env_config = Config.from_env()
    defaults = Config()

    # Merge (env takes precedence for non-default values)
    for key in ['relay_host', 'relay_port', 'channel_host', 'advertise_hosts',
                'framing', 'api_host', 'api_port', 'output_dir',
                'max_buffered_amount', 'register_timeout', 'connect_timeout',
                'log_level']:
        env_val = getattr(env_config, key)
        if env_val != getattr(defaults, key):
            setattr(config, key, env_val)

    return config


# Example config file template
EXAMPLE_CONFIG = """
{
  "relay_host": "127.0.0.1",
  "relay_port": 8765,
  "channel_host": "0.0.0.0",
  "advertise_hosts": ["192.168.1.20"],
  "framing": "combined",
  "api_host": "127.0.0.1",
  "api_port": 8080,
  "output_dir": "./received",
  "max_buffered_amount": 1048576,
  "register_timeout": 5.0,
  "connect_timeout": 30.0,
  "log_level": "INFO"
}
"""
