"""
Configuration management for the site instance handlers.
"""

import os
import re
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

DEFAULT_IMAGE = "projects/debian-cloud/global/images/family/debian-12"


def validate_project_id(project_id: str) -> bool:
    """Validate GCP project ID format."""
    # 6-30 chars, lowercase letters, digits, hyphens; starts with a letter
    pattern = r"^[a-z][a-z0-9-]{4,28}[a-z0-9]$"
    return bool(re.match(pattern, project_id))


def validate_zone(zone: str) -> bool:
    """Validate GCP zone format (e.g. europe-west2-a)."""
    pattern = r"^[a-z]+-[a-z]+\d+-[a-z]$"
    return bool(re.match(pattern, zone))


def _parse_bool(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in ("true", "1", "yes"):
        return True
    if text in ("false", "0", "no"):
        return False
    return None


@dataclass
class HandlerConfig:
    """Configuration shared by both flows and the gateway adapter."""

    project_id: str
    zone: str
    image: str = DEFAULT_IMAGE
    machine_type: str = "e2-medium"
    poll_interval: int = 5
    retry_budget: int = 60
    delegate_wait: bool = False
    request_timeout: int = 60
    verbose: bool = False

    @property
    def region(self) -> str:
        """Region containing the configured zone."""
        return self.zone.rsplit("-", 1)[0]

    @classmethod
    def from_env(
        cls,
        overrides: Optional[Dict[str, Any]] = None,
        env: Optional[Mapping[str, str]] = None,
    ) -> "HandlerConfig":
        """
        Build configuration from request overrides and environment variables.

        Priority: overrides > environment variables > defaults.

        Args:
            overrides: Values taken from the request body (snake_case keys)
            env: Environment mapping, defaults to os.environ

        Returns:
            HandlerConfig instance

        Raises:
            ValueError: If a required value is missing or malformed
        """
        overrides = overrides or {}
        env = os.environ if env is None else env

        def get_str(key: str, env_key: str, default: str = "") -> str:
            value = overrides.get(key)
            if value:
                return str(value).strip()
            return env.get(env_key, default).strip()

        def get_int(key: str, env_key: str, default: int) -> int:
            value = overrides.get(key)
            if value is not None:
                return int(value)
            env_val = env.get(env_key, "")
            if env_val:
                return int(env_val)
            return default

        def get_bool(key: str, env_key: str, default: bool) -> bool:
            parsed = _parse_bool(overrides.get(key))
            if parsed is not None:
                return parsed
            parsed = _parse_bool(env.get(env_key, ""))
            return default if parsed is None else parsed

        project_id = get_str("project_id", "GCP_PROJECT_ID")
        if not project_id:
            raise ValueError(
                "project_id is required (request body or GCP_PROJECT_ID env var)"
            )
        if not validate_project_id(project_id):
            raise ValueError(f"Invalid project_id format: {project_id}")

        zone = get_str("zone", "ZONE")
        if not zone:
            raise ValueError("zone is required (request body or ZONE env var)")
        if not validate_zone(zone):
            raise ValueError(f"Invalid zone format: {zone}")

        retry_budget = get_int("retry_budget", "RETRY_BUDGET", 60)
        if retry_budget < 1:
            raise ValueError(f"retry_budget must be positive: {retry_budget}")

        return cls(
            project_id=project_id,
            zone=zone,
            image=get_str("image", "INSTANCE_IMAGE", DEFAULT_IMAGE),
            machine_type=get_str("machine_type", "MACHINE_TYPE", "e2-medium"),
            poll_interval=max(get_int("poll_interval", "POLL_INTERVAL", 5), 1),
            retry_budget=retry_budget,
            delegate_wait=get_bool("delegate_wait", "DELEGATE_WAIT", False),
            request_timeout=get_int("request_timeout", "REQUEST_TIMEOUT", 60),
            verbose=get_bool("verbose", "VERBOSE", False),
        )
