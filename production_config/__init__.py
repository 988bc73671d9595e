"""
production_config -- single public entrypoint for kernel configuration.

Responsibility:
    ``get_active_config()`` is the only way runtime code obtains
    configuration.  ``build_authorization_policy()`` and
    ``build_service_settings()`` translate the parsed configuration into
    the plain objects kernel services accept, so the kernel never imports
    this package.  ``initialize_kernel()`` does all of it at process start
    and also opens the database engine.

Resolution order:
    1. ``config_path`` argument
    2. ``PRODUCTION_KERNEL_CONFIG`` environment variable
    3. ``defaults.yaml`` shipped with this package
"""

from __future__ import annotations

import os
from pathlib import Path

from production_config.loader import load_config_file
from production_config.schema import ProductionConfig
from production_kernel.db.engine import init_engine_from_url
from production_kernel.domain.actor import AuthorizationPolicy
from production_kernel.logging_config import configure_logging, get_logger
from production_kernel.services.base import ServiceSettings

logger = get_logger("config")

DEFAULT_CONFIG_PATH = Path(__file__).parent / "defaults.yaml"
CONFIG_ENV_VAR = "PRODUCTION_KERNEL_CONFIG"


def get_active_config(config_path: str | Path | None = None) -> ProductionConfig:
    """Load and return the active configuration."""
    if config_path is None:
        config_path = os.environ.get(CONFIG_ENV_VAR) or DEFAULT_CONFIG_PATH
    path = Path(config_path)
    config = load_config_file(path)
    logger.info(
        "config_loaded",
        extra={
            "source": str(path),
            "max_attempts": config.transactions.max_attempts,
            "authorization_overrides": len(config.authorization),
        },
    )
    return config


def build_authorization_policy(config: ProductionConfig) -> AuthorizationPolicy:
    return AuthorizationPolicy.from_mapping(
        {op: list(roles) for op, roles in config.authorization.items()}
    )


def build_service_settings(config: ProductionConfig) -> ServiceSettings:
    return ServiceSettings(
        policy=build_authorization_policy(config),
        max_attempts=config.transactions.max_attempts,
        backoff_seconds=config.transactions.backoff_seconds,
        manual_reservation_expiry_hours=config.reservations.manual_expiry_hours,
        request_number_prefix=config.requests.number_prefix,
        request_number_width=config.requests.number_width,
    )


def initialize_kernel(
    config_path: str | Path | None = None,
) -> tuple[ProductionConfig, ServiceSettings]:
    """
    Load configuration, configure logging and open the database engine.

    Returns the config and the ServiceSettings every service should share.
    """
    config = get_active_config(config_path)
    configure_logging(level=config.logging.level.upper())
    db = config.database
    init_engine_from_url(
        db.url,
        echo=db.echo,
        pool_size=db.pool_size,
        max_overflow=db.max_overflow,
        pool_timeout=db.pool_timeout,
        pool_recycle=db.pool_recycle,
    )
    return config, build_service_settings(config)


__all__ = [
    "DEFAULT_CONFIG_PATH",
    "ProductionConfig",
    "build_authorization_policy",
    "build_service_settings",
    "get_active_config",
    "initialize_kernel",
]
