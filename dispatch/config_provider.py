"""
Purpose: Resolves the active MatchingAlgorithmConfig.
What it does:
- Loads the active config from the store on first use and caches it.
- If the store has none, creates, activates and persists the default.
- If the store fails, keeps the last config that loaded successfully, else the default.

Callers hold a ConfigProvider instance (there is no module-level singleton) and call
refresh_config() when they want to pick up a newly activated version.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import replace
from typing import List, Optional

from drivers.policy import MatchingAlgorithmConfig, default_matching_config
from .store import MatchingStore

logger = logging.getLogger(__name__)


class ConfigProvider:

    def __init__(self, store: MatchingStore, default_config_name: Optional[str] = None):
        self.store = store
        self.default_config_name = default_config_name
        self._config: Optional[MatchingAlgorithmConfig] = None
        self._lock = threading.Lock()

    def _default(self) -> MatchingAlgorithmConfig:
        config = default_matching_config()
        if self.default_config_name:
            config = replace(config, name=self.default_config_name)
        return config

    def get_active_config(self) -> MatchingAlgorithmConfig:
        config = self._config
        if config is None:
            config = self.refresh_config()
        return config

    def refresh_config(self) -> MatchingAlgorithmConfig:
        with self._lock:
            try:
                config = self.store.get_active_config()
                if config is None:
                    config = self.store.save_config(self._default(), activate=True)
                    logger.info(f"No active matching config found, activated default '{config.name}'")
                config.validate()
            except Exception:
                logger.exception("Failed to load matching config, falling back")
                if self._config is not None:
                    return self._config
                return self._default()

            self._config = config
            return config

    def save_config(self, config: MatchingAlgorithmConfig, activate: bool = False) -> MatchingAlgorithmConfig:
        """
        Persists a new config version. Activating it swaps the cached config immediately.
        """
        config.validate()
        saved = self.store.save_config(config, activate=activate)
        if saved.is_active:
            logger.info(f"Activated matching config '{saved.name}' v{saved.version}")
            with self._lock:
                self._config = saved
        return saved

    def list_configs(self, active_only: bool = False) -> List[MatchingAlgorithmConfig]:
        return self.store.list_configs(active_only=active_only)
