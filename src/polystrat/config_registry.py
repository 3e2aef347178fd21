"""Hot-reloadable strategy config registry.

Configs are immutable dataclasses; ``update`` validates a new copy and swaps
it in atomically, so readers never observe a half-applied change.
"""

from __future__ import annotations

import json
import logging
from typing import Callable, Optional

from polystrat.config import (
    CONFIG_TYPES,
    GlobalConfig,
    StrategyConfig,
    default_strategy_config,
)
from polystrat.errors import ConfigurationError
from polystrat.models.opportunity import StrategyType
from polystrat.storage.record_store import RecordStore

logger = logging.getLogger(__name__)

GLOBAL_KEY = "global"

# (key, new config) → None. key is a StrategyType value or "global".
ConfigListener = Callable[[str, object], None]


class StrategyConfigRegistry:
    """Per-strategy configs plus the global config.

    Args:
        store: optional record store; every change is written through.
    """

    def __init__(self, store: Optional[RecordStore] = None):
        self.store = store
        self._configs: dict[StrategyType, StrategyConfig] = {
            st: default_strategy_config(st) for st in StrategyType
        }
        self._global = GlobalConfig()
        self._listeners: list[ConfigListener] = []

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def get(self, strategy_type: StrategyType) -> StrategyConfig:
        return self._configs[strategy_type]

    @property
    def global_config(self) -> GlobalConfig:
        return self._global

    @property
    def emergency_stop(self) -> bool:
        return self._global.emergency_stop

    # ------------------------------------------------------------------
    # Write
    # ------------------------------------------------------------------

    def update(self, strategy_type: StrategyType, partial: dict) -> StrategyConfig:
        """Apply a partial update.

        Raises:
            ConfigurationError: unknown key or invalid value. The previous
                config stays in effect.
        """
        new = self._configs[strategy_type].updated(partial)
        self._configs[strategy_type] = new
        logger.info("[CONFIG] %s updated: %s", strategy_type.value, sorted(partial))
        self._changed(strategy_type.value, new)
        return new

    def replace(self, strategy_type: StrategyType, config: StrategyConfig) -> StrategyConfig:
        """Install a whole config object after validating it."""
        expected = CONFIG_TYPES[strategy_type]
        if not isinstance(config, expected):
            raise ConfigurationError(
                f"{strategy_type.value} expects {expected.__name__}, got {type(config).__name__}",
            )
        config.validate()
        self._configs[strategy_type] = config
        self._changed(strategy_type.value, config)
        return config

    def update_global(self, partial: dict) -> GlobalConfig:
        self._global = self._global.updated(partial)
        logger.info("[CONFIG] global updated: %s", sorted(partial))
        self._changed(GLOBAL_KEY, self._global)
        return self._global

    def set_emergency_stop(self, active: bool) -> None:
        if active:
            logger.warning("[CONFIG] EMERGENCY STOP activated")
        else:
            logger.info("[CONFIG] emergency stop cleared")
        self.update_global({"emergency_stop": active})

    def add_listener(self, listener: ConfigListener) -> Callable[[], None]:
        """Subscribe to changes. Returns an unsubscribe function."""
        self._listeners.append(listener)

        def _remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _remove

    # ------------------------------------------------------------------
    # Export / import / persistence
    # ------------------------------------------------------------------

    def to_dict(self) -> dict:
        data = {st.value: cfg.to_dict() for st, cfg in self._configs.items()}
        data[GLOBAL_KEY] = self._global.to_dict()
        return data

    def export_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)

    def import_json(self, text: str) -> None:
        """Replace all configs from an exported document.

        All sections are validated before any is applied.

        Raises:
            ConfigurationError: malformed JSON, unknown section or invalid values.
        """
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"invalid config JSON: {e}") from e
        if not isinstance(data, dict):
            raise ConfigurationError("config JSON must be an object")
        self._apply_sections(data)

    def load_from_store(self) -> None:
        """Restore configs saved by a previous run (no-op without a store)."""
        if self.store is None:
            return
        saved = self.store.load_strategy_configs()
        if saved:
            self._apply_sections(saved, persist=False)
            logger.info("[CONFIG] restored %d config sections from store", len(saved))

    def _apply_sections(self, data: dict, persist: bool = True) -> None:
        new_configs = dict(self._configs)
        new_global = self._global
        for key, section in data.items():
            if not isinstance(section, dict):
                raise ConfigurationError(f"section {key!r} must be an object")
            if key == GLOBAL_KEY:
                new_global = GlobalConfig.from_dict(section)
                continue
            try:
                st = StrategyType(key)
            except ValueError:
                raise ConfigurationError(f"unknown config section {key!r}") from None
            new_configs[st] = CONFIG_TYPES[st].from_dict(section)

        self._configs = new_configs
        self._global = new_global
        for st, cfg in self._configs.items():
            self._changed(st.value, cfg, persist=persist)
        self._changed(GLOBAL_KEY, self._global, persist=persist)

    def _changed(self, key: str, config, persist: bool = True) -> None:
        if persist and self.store is not None:
            try:
                self.store.save_strategy_config(key, config.to_dict())
            except Exception:
                logger.exception("Failed to persist config %s", key)
        for listener in list(self._listeners):
            try:
                listener(key, config)
            except Exception:
                logger.exception("Config listener failed for %s", key)
