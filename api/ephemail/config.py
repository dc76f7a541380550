"""Configuration management using YAML file"""

import os
from typing import Dict, List
import yaml


DEFAULT_TIER_DURATIONS = {'10min': 10 * 60, '1hour': 60 * 60, '1day': 24 * 60 * 60}
DEFAULT_DAILY_LIMITS = {'10min': 20, '1hour': 10, '1day': 5}


class Config:
    """Application configuration loaded from YAML file"""

    def __init__(self, config_path: str):
        with open(config_path, 'r') as f:
            config = yaml.safe_load(f) or {}

        # Domains
        domains_config = config.get('domains', {})
        self.DEFAULT_DOMAIN: str = domains_config.get('default', 'tempmail.example.com')
        self.PUBLIC_DOMAIN_CACHE_TTL_SECONDS: int = domains_config.get('public_cache_ttl_seconds', 30 * 60)
        self.OWNER_DOMAIN_CACHE_TTL_SECONDS: int = domains_config.get('owner_cache_ttl_seconds', 5 * 60)

        # Database
        db_config = config.get('database', {})
        self.DATABASE_URL: str = db_config.get('url', '')
        self.DB_POOL_SIZE: int = db_config.get('pool_size', 10)
        self.DB_MAX_OVERFLOW: int = db_config.get('max_overflow', 20)

        # Server
        server_config = config.get('server', {})
        self.API_HOST: str = server_config.get('api_host', '127.0.0.1')
        self.API_PORT: int = server_config.get('api_port', 8000)
        self.DOCS_ENABLED: bool = server_config.get('docs_enabled', True)

        # Mailbox settings
        tempmail_config = config.get('tempmail', {})
        self.TIER_DURATIONS: Dict[str, int] = tempmail_config.get('tier_durations_seconds', dict(DEFAULT_TIER_DURATIONS))
        self.MAX_MESSAGES_PER_ENTITY: int = tempmail_config.get('max_messages_per_entity', 50)
        self.LOCAL_PART_LENGTH: int = tempmail_config.get('local_part_length', 8)
        self.ADDRESS_GENERATION_ATTEMPTS: int = tempmail_config.get('address_generation_attempts', 10)

        # Quotas
        quota_config = config.get('quota', {})
        self.DAILY_LIMITS: Dict[str, int] = quota_config.get('daily_limits', dict(DEFAULT_DAILY_LIMITS))
        self.PRIVILEGED_QUOTA_LEVELS: List[str] = quota_config.get('privileged_levels', ['unlimited', 'enterprise'])
        self.CUSTOM_DOMAIN_DAILY_LIMIT: int = quota_config.get('custom_domain_daily_limit', 20)
        self.CUSTOM_DOMAIN_TOTAL_LIMIT: int = quota_config.get('custom_domain_total_limit', 100)
        self.USAGE_RETENTION_DAYS: int = quota_config.get('usage_retention_days', 7)
        self.DOMAIN_USAGE_IDLE_HOURS: int = quota_config.get('domain_usage_idle_hours', 25)

        # Gmail aliases
        gmail_config = config.get('gmail', {})
        self.ALIAS_TTL_HOURS: int = gmail_config.get('alias_ttl_hours', 7 * 24)
        self.GMAIL_DEFAULT_DOMAIN: str = gmail_config.get('default_domain', 'gmail.com')

        # Background jobs
        jobs_config = config.get('jobs', {})
        self.SWEEP_INTERVAL_SECONDS: int = jobs_config.get('sweep_interval_seconds', 60 * 60)
        self.INITIAL_SWEEP_DELAY_SECONDS: int = jobs_config.get('initial_sweep_delay_seconds', 5)
        self.SYNC_INTERVAL_SECONDS: int = jobs_config.get('sync_interval_seconds', 30)

        # Notifications
        notify_config = config.get('notifications', {})
        self.NOTIFY_WORKERS: int = notify_config.get('workers', 4)
        self.NOTIFY_SEND_TIMEOUT_SECONDS: float = notify_config.get('send_timeout_seconds', 2.0)

        # Logging
        logging_config = config.get('logging', {})
        self.LOG_LEVEL: str = logging_config.get('level', 'info')
        self.LOG_FORMAT: str = logging_config.get('format', 'json')

        # CORS
        cors_config = config.get('cors', {})
        self.CORS_ALLOW_ORIGINS: List[str] = cors_config.get('allow_origins', ['*'])
        self.CORS_ALLOW_CREDENTIALS: bool = cors_config.get('allow_credentials', True)
        self.CORS_ALLOW_METHODS: List[str] = cors_config.get('allow_methods', ['*'])
        self.CORS_ALLOW_HEADERS: List[str] = cors_config.get('allow_headers', ['*'])

    @property
    def TIERS(self) -> List[str]:
        return list(self.TIER_DURATIONS)


def load_config() -> Config:
    """Load configuration from YAML file"""
    # In test mode, return a minimal test configuration
    if os.getenv('TESTING'):
        return create_test_config()

    config_path = os.getenv('CONFIG_PATH', '/config/config.yaml')

    # For local development, try relative path
    if not os.path.exists(config_path):
        config_path = os.path.join(os.path.dirname(__file__), '..', '..', 'config.yaml')

    if not os.path.exists(config_path):
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    return Config(config_path)


def create_test_config() -> Config:
    """Create a minimal configuration for testing"""
    # Create a mock config object without requiring a file
    config = Config.__new__(Config)

    config.DEFAULT_DOMAIN = 'tempmail.example.com'
    config.PUBLIC_DOMAIN_CACHE_TTL_SECONDS = 30 * 60
    config.OWNER_DOMAIN_CACHE_TTL_SECONDS = 5 * 60
    config.DATABASE_URL = 'sqlite:///:memory:'
    config.DB_POOL_SIZE = 5
    config.DB_MAX_OVERFLOW = 10
    config.API_HOST = '127.0.0.1'
    config.API_PORT = 8000
    config.DOCS_ENABLED = True
    config.TIER_DURATIONS = dict(DEFAULT_TIER_DURATIONS)
    config.MAX_MESSAGES_PER_ENTITY = 50
    config.LOCAL_PART_LENGTH = 8
    config.ADDRESS_GENERATION_ATTEMPTS = 10
    config.DAILY_LIMITS = dict(DEFAULT_DAILY_LIMITS)
    config.PRIVILEGED_QUOTA_LEVELS = ['unlimited', 'enterprise']
    config.CUSTOM_DOMAIN_DAILY_LIMIT = 20
    config.CUSTOM_DOMAIN_TOTAL_LIMIT = 100
    config.USAGE_RETENTION_DAYS = 7
    config.DOMAIN_USAGE_IDLE_HOURS = 25
    config.ALIAS_TTL_HOURS = 7 * 24
    config.GMAIL_DEFAULT_DOMAIN = 'gmail.com'
    config.SWEEP_INTERVAL_SECONDS = 60 * 60
    config.INITIAL_SWEEP_DELAY_SECONDS = 5
    config.SYNC_INTERVAL_SECONDS = 30
    config.NOTIFY_WORKERS = 2
    config.NOTIFY_SEND_TIMEOUT_SECONDS = 1.0
    config.LOG_LEVEL = 'info'
    config.LOG_FORMAT = 'json'
    config.CORS_ALLOW_ORIGINS = ['*']
    config.CORS_ALLOW_CREDENTIALS = True
    config.CORS_ALLOW_METHODS = ['*']
    config.CORS_ALLOW_HEADERS = ['*']

    return config


# Global config instance
settings = load_config()
