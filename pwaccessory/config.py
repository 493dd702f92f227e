"""
Configuration for pwaccessory

Two layers:

    PlatformConfig (pydantic):
        The plugin configuration describing which gateways to connect to and
        per-device overrides. Loaded from a JSON file (PW_CONFIG) or from the
        inline PW_GATEWAYS environment variable.

            {
              "gateways": [
                {"gateway": "10.0.1.99", "email": "me@example.com", "password": "secret"}
              ],
              "options": {"eveHistory": true},
              "devices": {"TG1234567890AB": {"exclude": false, "eveHistory": true}}
            }

        Gateway entries missing a gateway address, email or password are
        skipped and never attempted.

    Settings (pydantic-settings):
        Runtime knobs read from the environment.

        PW_CONFIG            - Path to JSON configuration file (default: none)
        PW_GATEWAYS          - Inline JSON list of gateway entries (default: none)
        PW_POLL_INTERVAL     - Seconds between data cycles per gateway (default: 15)
        PW_TIMEOUT           - Seconds allowed per HTTP attempt (default: 10)
        PW_FETCH_ATTEMPTS    - Attempts per data resource fetch (default: 1)
        PW_LOGIN_ATTEMPTS    - Attempts per login call (default: 1)
        PW_POOL_MAXSIZE      - HTTP connection pool size (default: 10)
        PW_TOKEN_REFRESH     - Seconds between token refreshes (default: 86400)
        PW_DEBUG             - Enable debug logging (default: no)
"""
import json
import logging
import os
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings

from pwaccessory.exceptions import InvalidConfigurationParameter

log = logging.getLogger(__name__)

DEFAULT_USERNAME = 'customer'


class GatewayConfig(BaseModel):
    """Connection details for one local gateway."""
    gateway: str = Field(min_length=1)  # host name or IP address
    email: str = Field(min_length=1)
    password: str = Field(min_length=1, repr=False)
    username: str = DEFAULT_USERNAME

    @field_validator('gateway', 'email', 'password', mode='before')
    @classmethod
    def _strip(cls, value):
        return value.strip() if isinstance(value, str) else value

    @field_validator('username', mode='before')
    @classmethod
    def _default_username(cls, value):
        if value is None or (isinstance(value, str) and value.strip() == ''):
            return DEFAULT_USERNAME
        return value


class DeviceOptions(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    exclude: bool = False
    eve_history: bool = Field(default=False, alias='eveHistory')

    @field_validator('exclude', 'eve_history', mode='before')
    @classmethod
    def _true_only(cls, value):
        # Only a real boolean true switches an override on
        return value is True


class PlatformOptions(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    eve_history: bool = Field(default=True, alias='eveHistory')

    @field_validator('eve_history', mode='before')
    @classmethod
    def _boolean_only(cls, value):
        # Anything other than a real boolean falls back to the default
        return value if isinstance(value, bool) else True


class PlatformConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    gateways: List[GatewayConfig] = Field(default_factory=list)
    options: PlatformOptions = Field(default_factory=PlatformOptions)
    devices: Dict[str, DeviceOptions] = Field(default_factory=dict)

    @field_validator('gateways', mode='before')
    @classmethod
    def _skip_invalid_gateways(cls, value):
        if not isinstance(value, list):
            return []
        valid = []
        for entry in value:
            try:
                valid.append(GatewayConfig.model_validate(entry))
            except ValidationError as exc:
                log.debug(f"Skipping incomplete gateway configuration entry: {exc.error_count()} error(s)")
        return valid

    @field_validator('options', mode='before')
    @classmethod
    def _options(cls, value):
        return value if isinstance(value, (dict, PlatformOptions)) else {}

    @field_validator('devices', mode='before')
    @classmethod
    def _upper_case_serials(cls, value):
        if not isinstance(value, dict):
            return {}
        devices = {}
        for serial, options in value.items():
            try:
                devices[str(serial).upper()] = DeviceOptions.model_validate(options)
            except ValidationError as exc:
                log.debug(f"Skipping invalid device configuration for {serial}: {exc.error_count()} error(s)")
        return devices

    def device(self, serial: str) -> Optional[DeviceOptions]:
        return self.devices.get(serial.upper()) if serial else None

    def is_excluded(self, serial: str) -> bool:
        options = self.device(serial)
        return options is not None and options.exclude is True

    def history_enabled(self, serial: str) -> bool:
        options = self.device(serial)
        return self.options.eve_history is True or (options is not None and options.eve_history is True)

    @classmethod
    def load(cls, path: str) -> 'PlatformConfig':
        """ Load configuration from a JSON file """
        try:
            with open(os.path.expanduser(path), 'r') as f:
                data = json.load(f)
        except (OSError, ValueError) as exc:
            raise InvalidConfigurationParameter(f"Unable to read configuration file {path}: {exc}")
        if not isinstance(data, dict):
            raise InvalidConfigurationParameter(f"Configuration file {path} must contain a JSON object")
        try:
            return cls.model_validate(data)
        except ValidationError as exc:
            raise InvalidConfigurationParameter(f"Invalid configuration file {path}: {exc}")


class Settings(BaseSettings):
    """Runtime settings read from PW_* environment variables."""

    config_file: Optional[str] = Field(default=None, alias='PW_CONFIG')
    gateways_json: Optional[str] = Field(default=None, alias='PW_GATEWAYS')
    poll_interval: float = Field(default=15, alias='PW_POLL_INTERVAL')
    timeout: float = Field(default=10, alias='PW_TIMEOUT')
    fetch_attempts: int = Field(default=1, alias='PW_FETCH_ATTEMPTS')
    login_attempts: int = Field(default=1, alias='PW_LOGIN_ATTEMPTS')
    pool_maxsize: int = Field(default=10, alias='PW_POOL_MAXSIZE')
    token_refresh: float = Field(default=24 * 3600, alias='PW_TOKEN_REFRESH')
    debug: bool = Field(default=False, alias='PW_DEBUG')

    model_config = {
        "env_prefix": "",
        "case_sensitive": False,
        "populate_by_name": True,
    }

    def platform_config(self) -> PlatformConfig:
        """ Build the platform configuration from PW_CONFIG or PW_GATEWAYS """
        if self.config_file:
            return PlatformConfig.load(self.config_file)
        data: Dict[str, Any] = {}
        if self.gateways_json:
            try:
                data['gateways'] = json.loads(self.gateways_json)
            except ValueError as e:
                log.error(f"Error parsing PW_GATEWAYS: {e}")
        return PlatformConfig.model_validate(data)
