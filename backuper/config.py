import os
import tempfile
from dataclasses import dataclass, field
from typing import List, Optional

import yaml
from apscheduler.triggers.cron import CronTrigger


class ConfigurationError(Exception):
    """Raised when configuration is missing or invalid."""
    pass


class Config:
    """Base configuration"""

    # Archive staging
    TEMP_DIR = os.environ.get('TEMP_DIR') or tempfile.gettempdir()

    # Logging
    LOG_DIR = os.environ.get('LOG_DIR') or os.path.join(os.getcwd(), 'data', 'logs')
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO').upper()

    # Scheduler
    SCHEDULER_TIMEZONE = os.environ.get('SCHEDULER_TIMEZONE') or 'UTC'

    # Backup settings file
    BACKUP_CONFIG_PATH = os.environ.get('BACKUPER_CONFIG') or 'config.yml'


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True
    LOG_LEVEL = 'DEBUG'

    # Use local data directory for development
    BASE_DIR = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))
    DATA_DIR = os.path.join(BASE_DIR, 'data')
    TEMP_DIR = os.path.join(DATA_DIR, 'temp')
    LOG_DIR = os.path.join(DATA_DIR, 'logs')


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False


class TestingConfig(Config):
    """Testing configuration"""
    DEBUG = False
    TESTING = True
    LOG_DIR = os.path.join(tempfile.gettempdir(), 'backuper-test-logs')


# Configuration dictionary
config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig,
    'default': ProductionConfig
}


@dataclass
class CloudFlareSettings:
    uri: str = ''
    bucket: str = ''
    access_key_id: str = ''
    secret_key: str = ''
    account_id: str = ''
    endpoint_url: Optional[str] = None


@dataclass
class DiscordSettings:
    webhook_url: str = ''


@dataclass
class TelegramSettings:
    bot_token: str = ''
    chat_id: str = ''


@dataclass
class BackupSettings:
    schedule: str = ''
    folders: List[str] = field(default_factory=list)
    name_prefix: str = 'backup'
    retention_limit: int = 0
    upload_timeout: float = 600.0
    retention_timeout: float = 120.0


@dataclass
class StatusServerSettings:
    enabled: bool = False
    host: str = '0.0.0.0'
    port: int = 8080


@dataclass
class Settings:
    """Backup settings loaded from the YAML configuration file."""

    cloudflare: CloudFlareSettings = field(default_factory=CloudFlareSettings)
    discord: DiscordSettings = field(default_factory=DiscordSettings)
    telegram: TelegramSettings = field(default_factory=TelegramSettings)
    backup: BackupSettings = field(default_factory=BackupSettings)
    status_server: StatusServerSettings = field(default_factory=StatusServerSettings)

    @classmethod
    def from_dict(cls, data: dict) -> 'Settings':
        """
        Build settings from a parsed YAML mapping.

        Unknown keys are rejected so that typos surface at startup
        instead of silently falling back to defaults.

        Raises:
            ConfigurationError: If a section or key is unknown or malformed
        """
        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ConfigurationError("configuration root must be a mapping")

        sections = {
            'cloudflare': CloudFlareSettings,
            'discord': DiscordSettings,
            'telegram': TelegramSettings,
            'backup': BackupSettings,
            'status_server': StatusServerSettings,
        }

        unknown = set(data) - set(sections)
        if unknown:
            raise ConfigurationError(f"unknown configuration section(s): {', '.join(sorted(unknown))}")

        kwargs = {}
        for name, section_cls in sections.items():
            section = data.get(name) or {}
            if not isinstance(section, dict):
                raise ConfigurationError(f"{name} must be a mapping")
            try:
                kwargs[name] = section_cls(**section)
            except TypeError as e:
                raise ConfigurationError(f"invalid {name} section: {e}")

        return cls(**kwargs)

    def validate(self):
        """
        Validate required fields and fill defaults.

        Raises:
            ConfigurationError: On the first invalid setting found
        """
        cf = self.cloudflare
        if not cf.uri:
            raise ConfigurationError("cloudflare.uri is required")
        if not cf.bucket:
            raise ConfigurationError("cloudflare.bucket is required")
        if not cf.access_key_id:
            raise ConfigurationError("cloudflare.access_key_id is required")
        if not cf.secret_key:
            raise ConfigurationError("cloudflare.secret_key is required")
        if not cf.account_id and not cf.endpoint_url:
            raise ConfigurationError("cloudflare.account_id is required")

        # At least one notification method must be configured
        if not self.discord.webhook_url and not self.telegram.bot_token:
            raise ConfigurationError(
                "at least one notification method (discord or telegram) must be configured"
            )
        if self.telegram.bot_token and not self.telegram.chat_id:
            raise ConfigurationError("telegram.chat_id is required when telegram.bot_token is provided")

        backup = self.backup
        if not backup.schedule:
            raise ConfigurationError("backup.schedule is required")
        validate_schedule(backup.schedule)

        if not isinstance(backup.folders, list):
            raise ConfigurationError(
                f"backup.folders must be a list of paths, got {type(backup.folders).__name__}"
            )
        if not backup.folders:
            raise ConfigurationError("backup.folders must contain at least one folder")
        for folder in backup.folders:
            if not isinstance(folder, str) or not folder.strip():
                raise ConfigurationError(f"backup.folders entries must be non-empty paths, got {folder!r}")
        if not backup.name_prefix:
            backup.name_prefix = 'backup'

        try:
            backup.retention_limit = int(backup.retention_limit or 0)
        except (TypeError, ValueError):
            raise ConfigurationError(f"backup.retention_limit must be an integer, got {backup.retention_limit!r}")

        for attr in ('upload_timeout', 'retention_timeout'):
            value = getattr(backup, attr)
            try:
                value = float(value)
            except (TypeError, ValueError):
                raise ConfigurationError(f"backup.{attr} must be a number of seconds, got {value!r}")
            if value <= 0:
                raise ConfigurationError(f"backup.{attr} must be positive")
            setattr(backup, attr, value)

        # Strip trailing slash so public URLs are always "<uri>/<name>"
        cf.uri = cf.uri.rstrip('/')


def validate_schedule(expression: str, timezone: str = 'UTC') -> CronTrigger:
    """
    Parse a 5-field crontab expression.

    Returns:
        CronTrigger for the expression

    Raises:
        ConfigurationError: If the expression cannot be parsed
    """
    if not isinstance(expression, str):
        raise ConfigurationError(f"invalid backup.schedule {expression!r}: expected a crontab string")
    try:
        return CronTrigger.from_crontab(expression, timezone=timezone)
    except ValueError as e:
        raise ConfigurationError(f"invalid backup.schedule {expression!r}: {e}")


def load_settings(path: str) -> Settings:
    """
    Load and validate backup settings from a YAML file.

    Args:
        path: Path to the YAML configuration file

    Returns:
        Validated Settings

    Raises:
        ConfigurationError: If the file cannot be read, parsed or validated
    """
    try:
        with open(path, 'r') as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise ConfigurationError(f"failed to read config file: {e}")
    except yaml.YAMLError as e:
        raise ConfigurationError(f"failed to parse config file: {e}")

    settings = Settings.from_dict(data)
    settings.validate()
    return settings
