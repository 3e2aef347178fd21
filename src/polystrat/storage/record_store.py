"""Record store for opportunities, queue status and strategy configs.

The core only depends on ``RecordStore``; ``MemoryRecordStore`` keeps
serialized copies in memory and ``JsonFileRecordStore`` additionally
persists them to one JSON file with an atomic temp+rename write.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Optional

from polystrat.models.opportunity import (
    Opportunity,
    OpportunityFilter,
    OpportunityStatus,
    StrategyType,
)
from polystrat.models.queue import QueueStatus

logger = logging.getLogger(__name__)


class RecordStore:
    """Storage interface consumed by the engine."""

    def create_opportunity(self, opp: Opportunity) -> None:
        raise NotImplementedError

    def update_opportunity(self, opp: Opportunity) -> None:
        raise NotImplementedError

    def get_opportunity(self, opp_id: str) -> Optional[Opportunity]:
        raise NotImplementedError

    def list_opportunities(
        self, filter: Optional[OpportunityFilter] = None,
    ) -> list[Opportunity]:
        raise NotImplementedError

    def opportunity_stats(
        self, strategy_type: Optional[StrategyType] = None,
    ) -> dict:
        raise NotImplementedError

    def save_queue_status(self, status: QueueStatus) -> None:
        raise NotImplementedError

    def list_queue_status(self) -> list[QueueStatus]:
        raise NotImplementedError

    def save_strategy_config(self, key: str, config: dict) -> None:
        raise NotImplementedError

    def load_strategy_configs(self) -> dict[str, dict]:
        raise NotImplementedError


class MemoryRecordStore(RecordStore):
    """In-process store. Holds serialized dicts, never live objects."""

    def __init__(self):
        self._opportunities: dict[str, dict] = {}
        self._queues: dict[str, dict] = {}
        self._configs: dict[str, dict] = {}

    # ------------------------------------------------------------------
    # Opportunities
    # ------------------------------------------------------------------

    def create_opportunity(self, opp: Opportunity) -> None:
        if opp.id in self._opportunities:
            raise ValueError(f"Opportunity {opp.id} already exists")
        self._opportunities[opp.id] = opp.to_dict()
        self._changed()

    def update_opportunity(self, opp: Opportunity) -> None:
        if opp.id not in self._opportunities:
            raise KeyError(f"Opportunity {opp.id} not found")
        self._opportunities[opp.id] = opp.to_dict()
        self._changed()

    def get_opportunity(self, opp_id: str) -> Optional[Opportunity]:
        data = self._opportunities.get(opp_id)
        return Opportunity.from_dict(data) if data else None

    def list_opportunities(
        self, filter: Optional[OpportunityFilter] = None,
    ) -> list[Opportunity]:
        """최신순 정렬."""
        filter = filter or OpportunityFilter()
        opps = [Opportunity.from_dict(d) for d in self._opportunities.values()]
        opps = [o for o in opps if filter.matches(o)]
        opps.sort(key=lambda o: o.created_at, reverse=True)
        if filter.limit is not None:
            opps = opps[: filter.limit]
        return opps

    def opportunity_stats(
        self, strategy_type: Optional[StrategyType] = None,
    ) -> dict:
        """Counts per status plus profit totals."""
        stats: dict = {status.value: 0 for status in OpportunityStatus}
        stats["total"] = 0
        stats["expected_profit"] = 0.0
        stats["actual_profit"] = 0.0
        for data in self._opportunities.values():
            if strategy_type is not None and data["strategy_type"] != strategy_type.value:
                continue
            stats["total"] += 1
            stats[data["status"]] += 1
            stats["expected_profit"] += data["expected_profit"]
            stats["actual_profit"] += data.get("actual_profit") or 0.0
        return stats

    # ------------------------------------------------------------------
    # Queue status / strategy configs
    # ------------------------------------------------------------------

    def save_queue_status(self, status: QueueStatus) -> None:
        self._queues[status.name] = status.to_dict()
        self._changed()

    def list_queue_status(self) -> list[QueueStatus]:
        return [QueueStatus.from_dict(d) for d in self._queues.values()]

    def save_strategy_config(self, key: str, config: dict) -> None:
        self._configs[key] = json.loads(json.dumps(config))
        self._changed()

    def load_strategy_configs(self) -> dict[str, dict]:
        return json.loads(json.dumps(self._configs))

    def _changed(self) -> None:
        """Hook for persistent subclasses."""


class JsonFileRecordStore(MemoryRecordStore):
    """MemoryRecordStore mirrored to a JSON file after every write."""

    def __init__(self, path: Path | str):
        super().__init__()
        self.path = Path(path)
        self._load()

    def _changed(self) -> None:
        self.save()

    def save(self) -> None:
        """Atomic write: temp file, then rename."""
        state = {
            "opportunities": self._opportunities,
            "queues": self._queues,
            "configs": self._configs,
        }
        tmp_path = self.path.with_suffix(".tmp")
        try:
            tmp_path.write_text(json.dumps(state, indent=2))
            tmp_path.replace(self.path)
        except OSError as e:
            logger.error("Failed to save record store %s: %s", self.path, e)
            if tmp_path.exists():
                tmp_path.unlink()

    def _load(self) -> None:
        if not self.path.exists():
            logger.info("No record store at %s, starting fresh", self.path)
            return
        try:
            content = self.path.read_text().strip()
            if not content:
                logger.warning("Record store %s is empty, starting fresh", self.path)
                return
            state = json.loads(content)
        except (OSError, json.JSONDecodeError) as e:
            logger.error("Failed to load record store %s: %s, starting fresh", self.path, e)
            return

        self._opportunities = dict(state.get("opportunities", {}))
        self._queues = dict(state.get("queues", {}))
        self._configs = dict(state.get("configs", {}))
        logger.info(
            "Loaded %d opportunities from %s", len(self._opportunities), self.path,
        )
