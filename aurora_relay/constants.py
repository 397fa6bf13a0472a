"""Constants used across the aurora-relay package."""

from __future__ import annotations

from pathlib import Path

APP_NAME = "aurora-relay"
DEFAULT_CONFIG_FILENAME = f"{APP_NAME}.cfg"
DEFAULT_CONFIG_PATH = Path.home() / ".aurora" / DEFAULT_CONFIG_FILENAME

DEFAULT_HTTP_HOST = "0.0.0.0"
DEFAULT_HTTP_PORT = 5000

DEFAULT_BROKER_HOST = "localhost"
DEFAULT_BROKER_PORT = 1883
DEFAULT_TOPIC_PREFIX = "aurora/devices"

DEFAULT_TOKEN_SECRET = "dev"
DEFAULT_TOKEN_ALGORITHM = "HS256"

ENV_TOKEN_SECRET = "AURORA_JWT_SECRET"
ENV_DEVICE_SECRETS = "AURORA_DEVICE_SECRETS"
ENV_PORT = "AURORA_PORT"

SERVICE_BANNER = "Aurora Smart Home API Running"
