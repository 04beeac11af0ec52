"""
Configuration management and loading.

Handles governance settings and environment variables.
"""

import os
from dataclasses import asdict, dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

from generation_guard.core.errors import ConfigurationError, ValidationError


MODEL_KEYS = frozenset({"model_tier_a", "model_tier_b", "model_tier_c"})

# Ordered (min, max) pairs that must satisfy min <= max
RANGE_PAIRS = (
    ("cooldown_tier_a_min", "cooldown_tier_a_max"),
    ("cooldown_tier_b_min", "cooldown_tier_b_max"),
    ("cooldown_tier_c_min", "cooldown_tier_c_max"),
    ("abuse_ban_minutes_min", "abuse_ban_minutes_max"),
)


@dataclass(frozen=True)
class GovernanceSettings:
    """Immutable snapshot of the governance configuration.

    A new instance is created for every accepted update, so a decision
    that holds a reference always sees one consistent set of values.
    """
    hourly_batch_limit: float = 12
    daily_batch_limit: float = 100
    soft_warning_threshold: float = 3
    tier_a_max: float = 5
    tier_b_max: float = 10
    cooldown_tier_a_min: float = 30
    cooldown_tier_a_max: float = 60
    cooldown_tier_b_min: float = 60
    cooldown_tier_b_max: float = 120
    cooldown_tier_c_min: float = 120
    cooldown_tier_c_max: float = 300
    boost_tier_a_batches: int = 3
    abuse_request_threshold: int = 30
    abuse_window_seconds: float = 60
    abuse_sustained_seconds: float = 30
    abuse_ban_minutes_min: float = 5
    abuse_ban_minutes_max: float = 15
    model_tier_a: str = "gpt-4o"
    model_tier_b: str = "gpt-4o-mini"
    model_tier_c: str = "gpt-3.5-turbo"
    version: int = 0

    def __post_init__(self):
        """Validate value types, ranges and cross-field invariants."""
        for key in ALLOWED_SETTING_KEYS:
            value = getattr(self, key)
            if key in MODEL_KEYS:
                if not isinstance(value, str) or not value.strip():
                    raise ValidationError(f"'{key}' must be a non-empty string")
                continue
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ValidationError(f"'{key}' must be a number")
            if value < 0:
                raise ValidationError(f"'{key}' cannot be negative")

        for low_key, high_key in RANGE_PAIRS:
            if getattr(self, low_key) > getattr(self, high_key):
                raise ValidationError(f"'{low_key}' must be <= '{high_key}'")

        if not self.tier_a_max <= self.tier_b_max <= self.hourly_batch_limit:
            raise ValidationError(
                "tier thresholds must satisfy tier_a_max <= tier_b_max <= hourly_batch_limit"
            )

    def to_dict(self, include_version: bool = False) -> Dict[str, Any]:
        """Return the settings as a flat mapping of allow-listed keys."""
        data = asdict(self)
        if not include_version:
            data.pop("version")
        return data

    def with_updates(self, changes: Mapping[str, Any]) -> "GovernanceSettings":
        """Return a validated copy with `changes` applied and the version bumped."""
        return replace(self, version=self.version + 1, **dict(changes))


ALLOWED_SETTING_KEYS = frozenset(
    f.name for f in fields(GovernanceSettings) if f.name != "version"
)

DEFAULT_SETTINGS = GovernanceSettings()


def filter_allowed_keys(partial: Mapping[str, Any]) -> Dict[str, Any]:
    """Drop every key that is not part of the settings allow-list.

    Raises:
        ValidationError: If `partial` is not a mapping
    """
    if not isinstance(partial, Mapping):
        raise ValidationError("settings update must be a mapping")
    return {key: value for key, value in partial.items() if key in ALLOWED_SETTING_KEYS}


def load_settings_file(path: str) -> GovernanceSettings:
    """Load and validate governance settings from a YAML file.

    Unlike live updates, a settings file must not contain unknown keys:
    a typo in an operator-authored file should fail loudly.

    Args:
        path: Path to YAML settings file

    Returns:
        Validated GovernanceSettings (missing keys take their defaults)

    Raises:
        FileNotFoundError: If the file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValidationError: If the settings are invalid
    """
    settings_path = Path(path)
    if not settings_path.exists():
        raise FileNotFoundError(f"Settings file not found: {path}")

    with open(settings_path, 'r', encoding='utf-8') as f:
        try:
            raw = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in settings file {path}: {e}")

    if raw is None:
        return DEFAULT_SETTINGS
    if not isinstance(raw, dict):
        raise ValidationError("Settings file must contain a mapping")

    unknown_keys = set(raw.keys()) - ALLOWED_SETTING_KEYS
    if unknown_keys:
        raise ValidationError(f"Unknown settings keys: {sorted(unknown_keys)}")

    return replace(DEFAULT_SETTINGS, **raw)


def save_settings_file(settings: GovernanceSettings, path: str) -> None:
    """Write settings to a YAML file, replacing it atomically."""
    settings_path = Path(path)
    tmp_path = settings_path.with_name(settings_path.name + ".tmp")
    with open(tmp_path, 'w', encoding='utf-8') as f:
        yaml.safe_dump(settings.to_dict(), f, sort_keys=True)
    os.replace(tmp_path, settings_path)


@dataclass(frozen=True)
class AppConfig:
    """Process-level configuration read from the environment."""
    admin_secret: Optional[str] = None
    db_path: Optional[str] = None
    settings_path: Optional[str] = None

    def require_admin_secret(self) -> str:
        """Return the admin secret or fail if it was never configured.

        Raises:
            ConfigurationError: If ADMIN_SECRET_KEY is not set
        """
        if not self.admin_secret:
            raise ConfigurationError("ADMIN_SECRET_KEY not configured")
        return self.admin_secret


def load_app_config(environ: Optional[Mapping[str, str]] = None) -> AppConfig:
    """Build AppConfig from environment variables."""
    env = os.environ if environ is None else environ
    return AppConfig(
        admin_secret=env.get("ADMIN_SECRET_KEY") or None,
        db_path=env.get("GENERATION_GUARD_DB") or None,
        settings_path=env.get("GENERATION_GUARD_SETTINGS") or None,
    )
