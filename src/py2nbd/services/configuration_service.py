"""
Configuration service for loading NBD connection settings from YAML.

File layout:

    server:
      host: nbd.example.com
      port: 10809
      timeout: 30
    export:
      name: /exportname
    tls:
      verify: true
      ca_file: /etc/ssl/nbd-ca.pem
      server_hostname: nbd.example.com
"""

import logging
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

from py2nbd.core.errors import ConfigurationError, ErrorCodes
from py2nbd.core.nbd_protocol import NBD_DEFAULT_PORT
from py2nbd.models.connection import ConnectionConfig, TLSConfig


class ConfigurationService:
    """
    Loads and validates ConnectionConfig objects.

    Example:
        >>> service = ConfigurationService()
        >>> config = service.load("nbd.yaml")
        >>> config = service.with_overrides(config, host="10.0.0.5")
    """

    def __init__(self):
        self.logger = logging.getLogger(__name__)

    def load(self, path: Union[str, Path]) -> ConnectionConfig:
        """
        Read a YAML configuration file.

        Raises:
            ConfigurationError: If the file is missing, unreadable, unparsable
                or invalid
        """
        path = Path(path)
        if not path.is_file():
            raise ConfigurationError(
                f"Configuration file not found: {path}",
                error_code=ErrorCodes.CONFIG_NOT_FOUND,
                context={'path': str(path)}
            )

        try:
            with open(path, encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except (OSError, UnicodeDecodeError) as e:
            raise ConfigurationError(
                f"Could not read {path}: {e}",
                error_code=ErrorCodes.CONFIG_NOT_FOUND,
                cause=e,
                context={'path': str(path)}
            ) from e
        except yaml.YAMLError as e:
            raise ConfigurationError(
                f"Could not parse {path}: {e}",
                error_code=ErrorCodes.CONFIG_INVALID,
                cause=e,
                context={'path': str(path)}
            ) from e

        self.logger.info(f"Loaded configuration from {path}")
        return self.from_dict(data or {})

    def from_dict(self, data: Dict[str, Any]) -> ConnectionConfig:
        """
        Build a validated ConnectionConfig from parsed YAML.

        Raises:
            ConfigurationError: On missing or invalid values
        """
        if not isinstance(data, dict):
            raise ConfigurationError("Configuration must be a mapping")

        server = self._section(data, 'server')
        export = self._section(data, 'export')
        tls = self._section(data, 'tls')

        if 'host' not in server:
            raise ConfigurationError("Missing server.host", setting_name="server.host")
        if 'name' not in export:
            raise ConfigurationError("Missing export.name", setting_name="export.name")

        config = ConnectionConfig(
            host=server['host'],
            port=server.get('port', NBD_DEFAULT_PORT),
            export_name=export['name'],
            timeout=server.get('timeout'),
            tls=TLSConfig(
                verify=tls.get('verify', True),
                ca_file=tls.get('ca_file'),
                server_hostname=tls.get('server_hostname'),
            ),
        )
        if not isinstance(config.tls.verify, bool):
            raise ConfigurationError(
                f"tls.verify must be true or false, got {config.tls.verify!r}",
                setting_name="tls.verify"
            )
        return self.validate(config)

    def with_overrides(
        self,
        config: Optional[ConnectionConfig],
        host: Optional[str] = None,
        port: Optional[int] = None,
        export_name: Optional[str] = None,
        timeout: Optional[float] = None,
        verify: Optional[bool] = None,
        ca_file: Optional[str] = None
    ) -> ConnectionConfig:
        """
        Apply command-line overrides on top of an optional loaded config.

        Raises:
            ConfigurationError: If the result is incomplete or invalid
        """
        base_tls = config.tls if config else TLSConfig()
        tls = TLSConfig(
            verify=base_tls.verify if verify is None else verify,
            ca_file=ca_file or base_tls.ca_file,
            server_hostname=base_tls.server_hostname,
        )

        host = host or (config.host if config else None)
        export_name = export_name if export_name is not None else (config.export_name if config else None)
        if not host:
            raise ConfigurationError("No server host given", setting_name="server.host")
        if export_name is None:
            raise ConfigurationError("No export name given", setting_name="export.name")

        merged = ConnectionConfig(
            host=host,
            port=port or (config.port if config else NBD_DEFAULT_PORT),
            export_name=export_name,
            timeout=timeout if timeout is not None else (config.timeout if config else None),
            tls=tls,
        )
        return self.validate(merged)

    def validate(self, config: ConnectionConfig) -> ConnectionConfig:
        valid, errors = config.validate()
        if not valid:
            raise ConfigurationError(
                "Invalid configuration: " + "; ".join(errors),
                error_code=ErrorCodes.CONFIG_INVALID,
                context={'errors': errors}
            )
        return config

    @staticmethod
    def _section(data: Dict[str, Any], name: str) -> Dict[str, Any]:
        section = data.get(name) or {}
        if not isinstance(section, dict):
            raise ConfigurationError(f"Section '{name}' must be a mapping", setting_name=name)
        return section
