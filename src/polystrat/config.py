"""Bot configuration - env-based process settings and per-strategy configs."""

from __future__ import annotations

import dataclasses
import os
from dataclasses import dataclass, field
from typing import Optional

from polystrat.errors import ConfigurationError
from polystrat.models.opportunity import Confidence, StrategyType


def _require(condition: bool, message: str) -> None:
    if not condition:
        raise ConfigurationError(message)


def _is_fraction(value: float) -> bool:
    return 0.0 <= value <= 1.0


class _ConfigMixin:
    """Shared dict round-trip + partial update for config dataclasses."""

    def to_dict(self) -> dict:
        data = dataclasses.asdict(self)
        for key, value in data.items():
            if isinstance(value, Confidence):
                data[key] = value.value
        return data

    @classmethod
    def from_dict(cls, data: dict):
        return cls().updated(data)

    def updated(self, partial: dict):
        """Return a validated copy with ``partial`` applied.

        Raises:
            ConfigurationError: unknown key or invalid value.
        """
        known = {f.name: f for f in dataclasses.fields(self)}
        changes = {}
        for key, value in partial.items():
            if key not in known:
                raise ConfigurationError(f"{type(self).__name__}: unknown key {key!r}")
            current = getattr(self, key)
            try:
                if isinstance(current, _ConfigMixin):
                    if isinstance(value, dict):
                        value = current.updated(value)
                    elif not isinstance(value, type(current)):
                        raise TypeError(f"expected mapping, got {type(value).__name__}")
                elif isinstance(current, Confidence):
                    value = Confidence(value) if not isinstance(value, Confidence) else value
                elif isinstance(current, bool):
                    if not isinstance(value, bool):
                        raise TypeError(f"expected bool, got {type(value).__name__}")
                elif isinstance(current, (int, float)) and not isinstance(current, bool):
                    if isinstance(value, bool) or not isinstance(value, (int, float)):
                        raise TypeError(f"expected number, got {type(value).__name__}")
                    if isinstance(current, int) and not float(value).is_integer():
                        raise ValueError(f"expected integer, got {value!r}")
                    value = type(current)(value)
            except (TypeError, ValueError) as e:
                raise ConfigurationError(
                    f"{type(self).__name__}.{key}: {e}",
                ) from e
            changes[key] = value
        new = dataclasses.replace(self, **changes)
        new.validate()
        return new

    def validate(self) -> None:
        raise NotImplementedError


# ---------------------------------------------------------------------------
# Per-strategy configs (hot-swappable, see StrategyConfigRegistry)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ScanConfig(_ConfigMixin):
    """마켓 스캔 필터 + 페이지네이션."""

    active_only: bool = True
    page_limit: int = 200
    max_pages: int = 100
    page_delay: float = 0.1  # seconds between pages
    liquidity_min: float = 0.0
    volume_min: float = 0.0
    min_outcomes: int = 2
    category: str = ""
    tag_id: str = ""

    def validate(self) -> None:
        _require(self.page_limit > 0, "scan.page_limit must be > 0")
        _require(self.max_pages > 0, "scan.max_pages must be > 0")
        _require(self.page_delay >= 0, "scan.page_delay must be >= 0")
        _require(self.min_outcomes >= 2, "scan.min_outcomes must be >= 2")
        _require(self.liquidity_min >= 0, "scan.liquidity_min must be >= 0")


@dataclass(frozen=True)
class MintSplitConfig(_ConfigMixin):
    enabled: bool = True
    auto_execute: bool = True
    scan_interval: float = 5.0
    mint_amount: float = 10.0
    max_slippage: float = 0.005
    min_outcomes: int = 2
    min_liquidity: float = 100.0
    min_price_sum: float = 1.005
    max_mint_per_trade: float = 100.0
    max_mint_per_day: float = 1000.0
    min_confidence: Confidence = Confidence.MEDIUM
    sell_delay: float = 0.5
    scan: ScanConfig = field(default_factory=ScanConfig)

    def validate(self) -> None:
        _require(self.scan_interval > 0, "mint_split.scan_interval must be > 0")
        _require(self.mint_amount > 0, "mint_split.mint_amount must be > 0")
        _require(_is_fraction(self.max_slippage), "mint_split.max_slippage must be in [0, 1]")
        _require(self.min_outcomes >= 2, "mint_split.min_outcomes must be >= 2")
        _require(self.min_price_sum >= 1.0, "mint_split.min_price_sum must be >= 1.0")
        _require(
            self.mint_amount <= self.max_mint_per_trade,
            "mint_split.mint_amount exceeds max_mint_per_trade",
        )
        _require(self.max_mint_per_day >= 0, "mint_split.max_mint_per_day must be >= 0")
        _require(self.sell_delay >= 0, "mint_split.sell_delay must be >= 0")
        self.scan.validate()


@dataclass(frozen=True)
class ArbitrageConfig(_ConfigMixin):
    """LONG/SHORT 공통 설정. 전략 타입별로 별도 인스턴스를 가짐."""

    enabled: bool = True
    auto_execute: bool = True
    scan_interval: float = 5.0
    min_spread: float = 0.005
    trade_amount: float = 10.0
    max_slippage: float = 0.005
    max_trade_per_order: float = 100.0
    max_trade_per_day: float = 1000.0
    use_order_book: bool = True
    short_allow_mint: bool = True
    scan: ScanConfig = field(default_factory=ScanConfig)

    def validate(self) -> None:
        _require(self.scan_interval > 0, "arbitrage.scan_interval must be > 0")
        _require(0.0 <= self.min_spread < 1.0, "arbitrage.min_spread must be in [0, 1)")
        _require(self.trade_amount > 0, "arbitrage.trade_amount must be > 0")
        _require(_is_fraction(self.max_slippage), "arbitrage.max_slippage must be in [0, 1]")
        _require(
            self.trade_amount <= self.max_trade_per_order,
            "arbitrage.trade_amount exceeds max_trade_per_order",
        )
        _require(self.max_trade_per_day >= 0, "arbitrage.max_trade_per_day must be >= 0")
        self.scan.validate()


@dataclass(frozen=True)
class MarketMakingConfig(_ConfigMixin):
    enabled: bool = True
    auto_execute: bool = True
    scan_interval: float = 60.0
    refresh_interval: float = 30.0
    spread: float = 0.02
    order_size: float = 10.0
    max_position_per_side: float = 100.0
    max_open_position: float = 500.0
    min_liquidity: float = 1000.0
    min_volume: float = 5000.0
    skew_threshold: float = 0.3
    skew_adjustment: float = 0.02
    auto_merge: bool = True
    merge_threshold: float = 50.0
    max_daily_loss: float = 50.0
    max_markets: int = 5
    scan: ScanConfig = field(default_factory=ScanConfig)

    def validate(self) -> None:
        _require(self.refresh_interval > 0, "market_making.refresh_interval must be > 0")
        _require(self.scan_interval > 0, "market_making.scan_interval must be > 0")
        _require(0.0 < self.spread < 1.0, "market_making.spread must be in (0, 1)")
        _require(self.order_size > 0, "market_making.order_size must be > 0")
        _require(_is_fraction(self.skew_threshold), "market_making.skew_threshold must be in [0, 1]")
        _require(
            0.0 <= self.skew_adjustment < 0.5,
            "market_making.skew_adjustment must be in [0, 0.5)",
        )
        _require(self.max_position_per_side > 0, "market_making.max_position_per_side must be > 0")
        _require(
            self.max_open_position >= self.max_position_per_side,
            "market_making.max_open_position must be >= max_position_per_side",
        )
        _require(self.merge_threshold > 0, "market_making.merge_threshold must be > 0")
        _require(self.max_daily_loss >= 0, "market_making.max_daily_loss must be >= 0")
        _require(self.max_markets > 0, "market_making.max_markets must be > 0")
        self.scan.validate()


@dataclass(frozen=True)
class GlobalConfig(_ConfigMixin):
    """모든 전략 공통 설정."""

    emergency_stop: bool = False
    max_daily_volume: float = 5000.0
    max_age_minutes: float = 5.0
    sweep_interval: float = 30.0
    queue_max_size: int = 100
    retry_count: int = 3
    retry_base_delay: float = 1.0
    cooldown_seconds: float = 60.0
    book_concurrency: int = 5

    def validate(self) -> None:
        _require(self.max_daily_volume >= 0, "global.max_daily_volume must be >= 0")
        _require(self.max_age_minutes > 0, "global.max_age_minutes must be > 0")
        _require(self.sweep_interval > 0, "global.sweep_interval must be > 0")
        _require(self.queue_max_size > 0, "global.queue_max_size must be > 0")
        _require(self.retry_count >= 0, "global.retry_count must be >= 0")
        _require(self.retry_base_delay >= 0, "global.retry_base_delay must be >= 0")
        _require(self.cooldown_seconds >= 0, "global.cooldown_seconds must be >= 0")
        _require(self.book_concurrency > 0, "global.book_concurrency must be > 0")


StrategyConfig = MintSplitConfig | ArbitrageConfig | MarketMakingConfig

CONFIG_TYPES: dict[StrategyType, type] = {
    StrategyType.MINT_SPLIT: MintSplitConfig,
    StrategyType.ARBITRAGE_LONG: ArbitrageConfig,
    StrategyType.ARBITRAGE_SHORT: ArbitrageConfig,
    StrategyType.MARKET_MAKING: MarketMakingConfig,
}


def default_strategy_config(strategy_type: StrategyType) -> StrategyConfig:
    if strategy_type == StrategyType.MARKET_MAKING:
        # 마켓메이킹 후보는 유동성/거래량 하한을 스캔 단계에서 적용
        return MarketMakingConfig(scan=ScanConfig(liquidity_min=1000.0, volume_min=5000.0))
    return CONFIG_TYPES[strategy_type]()


# ---------------------------------------------------------------------------
# BotConfig - 환경변수 기반 프로세스 설정
# ---------------------------------------------------------------------------


def _env_bool(name: str, default: str) -> bool:
    return os.environ.get(name, default).lower() not in ("false", "0", "no")


@dataclass
class BotConfig:
    """프로세스 전체 설정. 환경변수 또는 안전한 기본값."""

    dry_run: bool = True
    strategies: list[StrategyType] = field(
        default_factory=lambda: [StrategyType.ARBITRAGE_LONG],
    )
    state_file: Optional[str] = None
    gamma_url: str = "https://gamma-api.polymarket.com"
    clob_url: str = "https://clob.polymarket.com"
    call_timeout: float = 10.0
    status_interval: float = 60.0

    @classmethod
    def from_env(cls) -> BotConfig:
        """환경변수에서 설정 로드.

        Raises:
            ConfigurationError: unknown strategy name or bad numeric value.
        """
        names = os.environ.get("POLYSTRAT_STRATEGIES", "arbitrage_long")
        try:
            strategies = parse_strategy_list(names)
            call_timeout = float(os.environ.get("POLYSTRAT_CALL_TIMEOUT", "10"))
            status_interval = float(os.environ.get("POLYSTRAT_STATUS_INTERVAL", "60"))
        except ValueError as e:
            raise ConfigurationError(str(e)) from e

        return cls(
            dry_run=_env_bool("POLYSTRAT_DRY_RUN", "true"),
            strategies=strategies,
            state_file=os.environ.get("POLYSTRAT_STATE_FILE") or None,
            gamma_url=os.environ.get("POLYSTRAT_GAMMA_URL", cls.gamma_url),
            clob_url=os.environ.get("POLYSTRAT_CLOB_URL", cls.clob_url),
            call_timeout=call_timeout,
            status_interval=status_interval,
        )


def parse_strategy_list(names: str) -> list[StrategyType]:
    """``"mint_split,arbitrage_long"`` → [StrategyType, ...]."""
    result = []
    for name in names.split(","):
        name = name.strip().lower()
        if not name:
            continue
        try:
            result.append(StrategyType(name))
        except ValueError:
            valid = ", ".join(s.value for s in StrategyType)
            raise ValueError(f"Unknown strategy {name!r} (valid: {valid})") from None
    return result
