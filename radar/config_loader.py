"""
REBOUND RADAR CONFIG MANAGER
------------------------------------------------------------------------------
Handles loading and validation of configuration.
Supports YAML format with .env file overrides.
Tracking parameters are validated through TrackerConfig before startup.
"""

import os
import yaml
import logging
from typing import Dict, Any
from dotenv import load_dotenv

from .errors import ConfigInvalid
from .models import TrackerConfig


class ConfigManager:
    def __init__(self, config_path: str = "config/settings.yaml"):
        # 1. Load Environment Variables (Secure Keys)
        load_dotenv()

        # 2. Resolve Paths
        base_path = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
        self.config_path = os.path.join(base_path, config_path)
        self.logger = logging.getLogger("ConfigManager")
        self._config = {}

    def load_config(self) -> Dict[str, Any]:
        """Loads, merges, and validates the configuration."""
        if not os.path.exists(self.config_path):
            self.logger.critical(f"❌ Configuration file missing: {self.config_path}")
            raise SystemExit(1)

        try:
            with open(self.config_path, 'r', encoding='utf-8') as f:
                self._config = yaml.safe_load(f) or {}

            # 3. Inject Secure Environment Variables
            self._inject_env_vars()

            # 4. Validate Types & Logic
            self._validate_schema()

            self.logger.info(f"✅ Configuration loaded from {os.path.basename(self.config_path)}")
            return self._config

        except (yaml.YAMLError, OSError, AttributeError) as e:
            self.logger.critical(f"❌ Config Load Error: {e}")
            raise SystemExit(1)

    def _inject_env_vars(self):
        """Overrides yaml config with secure .env variables and logs it."""
        overrides = {
            'RADAR_EXCHANGE_KEY': ('exchange', 'api_key'),
            'RADAR_EXCHANGE_SECRET': ('exchange', 'api_secret'),
            'RADAR_TELEGRAM_TOKEN': ('telegram', 'bot_token'),
            'RADAR_TELEGRAM_CHAT_ID': ('telegram', 'chat_id'),
            'RADAR_INSTANCE_ID': ('system', 'instance_id'),
        }

        for env_var, (section, key) in overrides.items():
            val = os.getenv(env_var)
            if val:
                if section not in self._config or self._config[section] is None:
                    self._config[section] = {}

                self._config[section][key] = val
                # Mask secrets in logs
                masked_val = f"{val[:4]}...{val[-4:]}" if len(val) > 8 else "***"
                self.logger.info(f"🔑 ENV Override: {section}.{key} set to {masked_val}")

    def _validate_schema(self):
        """Ensures the config file isn't garbage."""

        # A. Check Critical Sections
        required_sections = ['system', 'exchange', 'tracking']
        for sec in required_sections:
            if not isinstance(self._config.get(sec), dict):
                self.logger.critical(f"❌ Missing critical config section: '{sec}'")
                raise SystemExit(1)

        # B. Optional sections default to empty
        for sec in ('database', 'health', 'telegram'):
            if not isinstance(self._config.get(sec), dict):
                self._config[sec] = {}

        # C. Type Enforcement & Safety Checks
        try:
            tracking = TrackerConfig.from_dict(self._config['tracking']).validate()
            self._config['tracking'] = tracking.to_dict()

            sys_conf = self._config['system']
            sys_conf['instance_id'] = str(sys_conf.get('instance_id') or 'default')
            sys_conf['log_level'] = str(sys_conf.get('log_level', 'INFO')).upper()
            if sys_conf['log_level'] not in ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'):
                raise ValueError(f"system.log_level '{sys_conf['log_level']}' is not a logging level")

            exchange = self._config['exchange']
            if not exchange.get('name'):
                exchange['name'] = 'binanceusdm'
            exchange['max_concurrency'] = int(exchange.get('max_concurrency', 20))
            if exchange['max_concurrency'] < 1:
                raise ValueError("exchange.max_concurrency must be >= 1")

            health = self._config['health']
            health['enabled'] = bool(health.get('enabled', True))
            health['port'] = int(health.get('port', 8080))

            self._config['database'].setdefault('path', 'data/radar.db')

        except ConfigInvalid as e:
            self.logger.critical(f"❌ Invalid tracking config: {e}")
            raise SystemExit(1)
        except (TypeError, ValueError) as e:
            self.logger.critical(f"❌ Configuration Type Error: {e}")
            raise SystemExit(1)

    def tracker_config(self) -> TrackerConfig:
        return TrackerConfig.from_dict(self._config.get('tracking'))

    def get(self, key: str, default: Any = None) -> Any:
        return self._config.get(key, default)
