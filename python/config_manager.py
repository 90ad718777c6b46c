"""
Configuration for the Partner MDM service

Sections (sap, registry, audit, api, logging, database) are read from
config.yaml when present; environment variables override single values.
"""

import os
import sys
import yaml
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Any, Optional, List

logger = logging.getLogger(__name__)


@dataclass
class SapConfig:
    """SAP integration and reverse sync settings"""
    enabled: bool = True
    base_url: Optional[str] = None
    user: Optional[str] = None
    password: Optional[str] = None
    timeout_ms: int = 15000
    page_size: int = 50
    updated_after: Optional[str] = None
    cron_expression: str = "0 * * * *"

    @property
    def is_configured(self) -> bool:
        """Base URL and both credentials are present"""
        return bool(self.base_url and self.user and self.password)

    @property
    def timeout_seconds(self) -> float:
        return self.timeout_ms / 1000.0


@dataclass
class RegistryConfig:
    """Public CNPJ registry lookup settings"""
    base_url: str = "https://api.cnpja.com"
    token: Optional[str] = None
    timeout_ms: int = 15000

    @property
    def timeout_seconds(self) -> float:
        return self.timeout_ms / 1000.0


@dataclass
class AuditConfig:
    """Audit comparison settings"""
    change_request_lookback: int = 5


@dataclass
class ApiConfig:
    """HTTP surface settings"""
    api_key: Optional[str] = None
    cors_origins: List[str] = field(default_factory=lambda: ["http://localhost:3000"])


@dataclass
class LoggingConfig:
    """Logging configuration"""
    level: str = "INFO"
    file: Optional[str] = None
    console: bool = True
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


@dataclass
class DatabaseConfig:
    """Database configuration"""
    host: str = "localhost"
    port: int = 5432
    user: str = "mdm_user"
    password: str = "mdm_password"
    name: str = "partner_mdm"


class ConfigurationError(Exception):
    """Raised when configuration is invalid"""
    pass


def _parse_bool(value: Any, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in ('1', 'true', 'yes', 'on'):
        return True
    if text in ('0', 'false', 'no', 'off'):
        return False
    return default


def _parse_positive_int(value: Any, default: int) -> int:
    try:
        parsed = int(str(value).strip())
    except (TypeError, ValueError):
        return default
    return parsed if parsed > 0 else default


class ConfigManager:
    """Manages service configuration"""

    _instance: Optional['ConfigManager'] = None

    ENV_OVERRIDES = {
        'SAP_SYNC_ENABLED': ('sap', 'enabled'),
        'SAP_BASE_URL': ('sap', 'base_url'),
        'SAP_USER': ('sap', 'user'),
        'SAP_PASSWORD': ('sap', 'password'),
        'SAP_REQUEST_TIMEOUT': ('sap', 'timeout_ms'),
        'SAP_SYNC_PAGE_SIZE': ('sap', 'page_size'),
        'SAP_SYNC_UPDATED_AFTER': ('sap', 'updated_after'),
        'SAP_SYNC_CRON': ('sap', 'cron_expression'),
        'CNPJ_OPEN_API_URL': ('registry', 'base_url'),
        'CNPJ_OPEN_API_TOKEN': ('registry', 'token'),
        'MDM_API_KEY': ('api', 'api_key'),
        'LOG_LEVEL': ('logging', 'level'),
    }

    def __init__(self, config_path: Optional[str] = None, environ: Optional[Dict[str, str]] = None):
        """Initialize configuration manager

        Args:
            config_path: Path to config.yaml file
            environ: Environment mapping used for overrides (defaults to os.environ)
        """
        self.config_path = Path(config_path) if config_path else self._find_config()
        self._environ = os.environ if environ is None else environ
        self._raw_config: Dict[str, Any] = {}
        self.sap: SapConfig = SapConfig()
        self.registry: RegistryConfig = RegistryConfig()
        self.audit: AuditConfig = AuditConfig()
        self.api: ApiConfig = ApiConfig()
        self.logging: LoggingConfig = LoggingConfig()
        self.database: DatabaseConfig = DatabaseConfig()

        if self.config_path and self.config_path.exists():
            self.load()
        else:
            logger.debug(f"Config file not found at {self.config_path}, using defaults")
            self._apply_env_overrides()

    def _find_config(self) -> Path:
        """Find config.yaml in common locations"""
        search_paths = [
            Path(__file__).parent / "config.yaml",
            Path.cwd() / "config.yaml",
            Path.cwd() / "python" / "config.yaml",
        ]

        for path in search_paths:
            if path.exists():
                return path

        return search_paths[0]

    def load(self) -> None:
        """Load configuration from YAML file"""
        try:
            with open(self.config_path, 'r', encoding='utf-8') as f:
                self._raw_config = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in config file: {e}")
        except FileNotFoundError:
            raise ConfigurationError(f"Config file not found: {self.config_path}")

        if not isinstance(self._raw_config, dict):
            raise ConfigurationError("Config file must contain a mapping at the top level")

        self._parse_sap()
        self._parse_registry()
        self._parse_audit()
        self._parse_api()
        self._parse_logging()
        self._parse_database()
        self._apply_env_overrides()

    def _parse_sap(self) -> None:
        """Parse SAP configuration"""
        cfg = self._raw_config.get('sap', {}) or {}
        defaults = SapConfig()
        self.sap = SapConfig(
            enabled=_parse_bool(cfg.get('enabled'), defaults.enabled),
            base_url=cfg.get('base_url', defaults.base_url),
            user=cfg.get('user', defaults.user),
            password=cfg.get('password', defaults.password),
            timeout_ms=_parse_positive_int(cfg.get('timeout_ms'), defaults.timeout_ms),
            page_size=_parse_positive_int(cfg.get('page_size'), defaults.page_size),
            updated_after=cfg.get('updated_after', defaults.updated_after),
            cron_expression=cfg.get('cron_expression') or defaults.cron_expression
        )

    def _parse_registry(self) -> None:
        """Parse CNPJ registry configuration"""
        cfg = self._raw_config.get('registry', {}) or {}
        defaults = RegistryConfig()
        self.registry = RegistryConfig(
            base_url=cfg.get('base_url') or defaults.base_url,
            token=cfg.get('token', defaults.token),
            timeout_ms=_parse_positive_int(cfg.get('timeout_ms'), defaults.timeout_ms)
        )

    def _parse_audit(self) -> None:
        cfg = self._raw_config.get('audit', {}) or {}
        self.audit = AuditConfig(
            change_request_lookback=_parse_positive_int(
                cfg.get('change_request_lookback'), AuditConfig.change_request_lookback
            )
        )

    def _parse_api(self) -> None:
        cfg = self._raw_config.get('api', {}) or {}
        self.api = ApiConfig(
            api_key=cfg.get('api_key'),
            cors_origins=cfg.get('cors_origins', self.api.cors_origins)
        )

    def _parse_logging(self) -> None:
        """Parse logging configuration"""
        cfg = self._raw_config.get('logging', {}) or {}
        self.logging = LoggingConfig(
            level=cfg.get('level', 'INFO'),
            file=cfg.get('file'),
            console=cfg.get('console', True),
            format=cfg.get('format', self.logging.format)
        )

    def _parse_database(self) -> None:
        """Parse database configuration"""
        cfg = self._raw_config.get('database', {}) or {}
        self.database = DatabaseConfig(
            host=cfg.get('host', self.database.host),
            port=cfg.get('port', self.database.port),
            user=cfg.get('user', self.database.user),
            password=cfg.get('password', self.database.password),
            name=cfg.get('name', self.database.name)
        )

    def _apply_env_overrides(self) -> None:
        """Environment variables win over the YAML file"""
        for env_name, (section_name, attribute) in self.ENV_OVERRIDES.items():
            raw = self._environ.get(env_name)
            if raw is None or raw == '':
                continue
            section = getattr(self, section_name)
            current = getattr(section, attribute)
            if isinstance(current, bool):
                value = _parse_bool(raw, current)
            elif isinstance(current, int):
                value = _parse_positive_int(raw, current)
            else:
                value = raw.strip()
            setattr(section, attribute, value)

    @classmethod
    def get_instance(cls, config_path: Optional[str] = None) -> 'ConfigManager':
        """Get singleton instance of ConfigManager"""
        if cls._instance is None:
            cls._instance = ConfigManager(config_path)
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """Reset singleton instance (useful for testing)"""
        cls._instance = None

    def to_dict(self) -> Dict[str, Any]:
        """Export configuration as dictionary, without secrets"""
        return {
            'sap': {
                'enabled': self.sap.enabled,
                'base_url': self.sap.base_url,
                'configured': self.sap.is_configured,
                'timeout_ms': self.sap.timeout_ms,
                'page_size': self.sap.page_size,
                'updated_after': self.sap.updated_after,
                'cron_expression': self.sap.cron_expression
            },
            'registry': {
                'base_url': self.registry.base_url,
                'timeout_ms': self.registry.timeout_ms
            },
            'audit': {
                'change_request_lookback': self.audit.change_request_lookback
            },
            'logging': {
                'level': self.logging.level,
                'file': self.logging.file,
                'console': self.logging.console
            },
            'database': {
                'host': self.database.host,
                'port': self.database.port,
                'name': self.database.name
            }
        }


def get_config(config_path: Optional[str] = None) -> ConfigManager:
    """Convenience function to get configuration instance"""
    return ConfigManager.get_instance(config_path)


def configure_logging(config: LoggingConfig) -> None:
    """Configure root logging from a LoggingConfig section"""
    handlers: List[logging.Handler] = []
    if config.console:
        handlers.append(logging.StreamHandler(sys.stdout))
    if config.file:
        Path(config.file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(config.file, encoding='utf-8'))
    if not handlers:
        handlers.append(logging.NullHandler())

    logging.basicConfig(
        level=getattr(logging, str(config.level).upper(), logging.INFO),
        format=config.format,
        handlers=handlers,
        force=True
    )
