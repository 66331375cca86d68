"""Configuration loading for the OSS client.

Supports two configuration sources:
1. Environment variables (for CI/CD) - takes priority
2. config.json file (for local development)

Environment Variables:
    OSS_ACCESS_KEY_ID=xxx
    OSS_ACCESS_KEY_SECRET=xxx
    OSS_SECURITY_TOKEN=xxx        (optional, STS credentials)
    OSS_ENDPOINT=oss-cn-hangzhou.aliyuncs.com
    OSS_BUCKET=my-bucket          (optional default bucket)
    OSS_HTTPS=true                (optional, default true)

config.json:
    {
        "access_key_id": "xxx",
        "access_key_secret": "xxx",
        "endpoint": "oss-cn-hangzhou.aliyuncs.com",
        "bucket": "my-bucket"
    }
"""

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from ossclient.request import DEFAULT_ENDPOINT


class ConfigError(Exception):
    """Raised when configuration loading fails."""

    pass


# Required fields for a client configuration
REQUIRED_FIELDS = ["access_key_id", "access_key_secret"]

ENV_ACCESS_KEY_ID = "OSS_ACCESS_KEY_ID"
ENV_ACCESS_KEY_SECRET = "OSS_ACCESS_KEY_SECRET"
ENV_SECURITY_TOKEN = "OSS_SECURITY_TOKEN"
ENV_ENDPOINT = "OSS_ENDPOINT"
ENV_BUCKET = "OSS_BUCKET"
ENV_HTTPS = "OSS_HTTPS"

_TRUE = ("1", "true", "yes", "on")
_FALSE = ("0", "false", "no", "off")


@dataclass
class ClientConfig:
    """Settings needed to build an OssClient."""

    access_key_id: str
    access_key_secret: str
    security_token: Optional[str] = None
    endpoint: str = DEFAULT_ENDPOINT
    bucket: Optional[str] = None
    https: bool = True


def _parse_bool(value, name: str) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    raise ConfigError(f"Invalid boolean for {name}: {value!r}")


def load_from_json(config_path: str) -> ClientConfig:
    """Load the client configuration from a JSON file.

    Args:
        config_path: Path to the config.json file.

    Returns:
        ClientConfig built from the file.

    Raises:
        ConfigError: If file doesn't exist, contains invalid JSON,
                    or is missing required fields.
    """
    path = Path(config_path)

    if not path.exists():
        raise ConfigError(f"Config file not found: {config_path}")

    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigError(f"Invalid JSON in config file: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError("Config file must contain a JSON object")

    for field in REQUIRED_FIELDS:
        if not data.get(field):
            raise ConfigError(f"Missing required field '{field}' in {config_path}")

    return ClientConfig(
        access_key_id=data["access_key_id"],
        access_key_secret=data["access_key_secret"],
        security_token=data.get("security_token") or None,
        endpoint=data.get("endpoint") or DEFAULT_ENDPOINT,
        bucket=data.get("bucket") or None,
        https=_parse_bool(data.get("https", True), "https"),
    )


def load_from_env() -> ClientConfig:
    """Load the client configuration from OSS_* environment variables.

    Raises:
        ConfigError: If the access key pair is missing or OSS_HTTPS is
                    not a boolean.
    """
    access_key_id = os.environ.get(ENV_ACCESS_KEY_ID)
    if not access_key_id:
        raise ConfigError(f"Missing environment variable: {ENV_ACCESS_KEY_ID}")

    access_key_secret = os.environ.get(ENV_ACCESS_KEY_SECRET)
    if not access_key_secret:
        raise ConfigError(f"Missing environment variable: {ENV_ACCESS_KEY_SECRET}")

    return ClientConfig(
        access_key_id=access_key_id,
        access_key_secret=access_key_secret,
        security_token=os.environ.get(ENV_SECURITY_TOKEN) or None,
        endpoint=os.environ.get(ENV_ENDPOINT) or DEFAULT_ENDPOINT,
        bucket=os.environ.get(ENV_BUCKET) or None,
        https=_parse_bool(os.environ.get(ENV_HTTPS, "true"), ENV_HTTPS),
    )


def has_env_credentials() -> bool:
    """Check if an access key id is set in the environment."""
    return bool(os.environ.get(ENV_ACCESS_KEY_ID))


def load_config(config_path: str = "config.json") -> ClientConfig:
    """Load the client configuration with environment priority.

    Priority order:
    1. Environment variables (if OSS_ACCESS_KEY_ID is set)
    2. config.json file

    Args:
        config_path: Path to config.json (used as fallback).

    Raises:
        ConfigError: If neither source provides credentials.
    """
    if has_env_credentials():
        return load_from_env()
    if Path(config_path).exists():
        return load_from_json(config_path)

    raise ConfigError(
        f"No credentials configured. Set {ENV_ACCESS_KEY_ID} and "
        f"{ENV_ACCESS_KEY_SECRET} or create a {config_path} file."
    )
