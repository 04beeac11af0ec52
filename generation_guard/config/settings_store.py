"""
Live governance settings.

Holds the current GovernanceSettings snapshot. Updates are validated in
full and then swapped in as a whole object, so readers see either the old
or the new snapshot and never a mix.
"""

import logging
import threading
from typing import Any, Mapping, Optional

from generation_guard.core.errors import ValidationError
from .loader import (
    DEFAULT_SETTINGS,
    GovernanceSettings,
    filter_allowed_keys,
    load_settings_file,
    save_settings_file,
)

logger = logging.getLogger(__name__)


class SettingsStore:
    """Process-wide settings holder, versioned by last write."""

    def __init__(self, initial: Optional[GovernanceSettings] = None, path: Optional[str] = None):
        """Initialize the store.

        Args:
            initial: Starting snapshot (defaults when omitted)
            path: Optional YAML file that accepted updates are written back to
        """
        self._settings = initial or DEFAULT_SETTINGS
        self._path = path
        self._write_lock = threading.Lock()

    @classmethod
    def from_file(cls, path: str) -> "SettingsStore":
        """Create a store seeded from, and persisting to, a YAML file."""
        return cls(initial=load_settings_file(path), path=path)

    def get(self) -> GovernanceSettings:
        """Current snapshot."""
        return self._settings

    def update(self, partial: Mapping[str, Any]) -> GovernanceSettings:
        """Apply a partial update.

        Keys outside the allow-list are dropped silently. An update that
        is empty after filtering is rejected.

        Raises:
            ValidationError: If no allow-listed key remains or the merged
                settings violate a range invariant
        """
        changes = filter_allowed_keys(partial)
        if not changes:
            raise ValidationError("No valid settings provided")

        with self._write_lock:
            candidate = self._settings.with_updates(changes)
            if self._path:
                save_settings_file(candidate, self._path)
            self._settings = candidate

        logger.info(f"Settings updated: keys={sorted(changes)}, version={candidate.version}")
        return candidate
