"""单次回测引擎（BacktestEngine）。

流程：数据 → 校验长度 → 逐根推进（市场状态 → 退出检查 → 形态检测 → 开/平仓 → 记录权益）
→ 期末强平 → 指标 → 导出。

同样的 K 线与规则集，每次运行得到完全相同的交易与指标。
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Sequence
from uuid import uuid4

from broker.paper_broker import SHORT_MARGIN_RATIO, PaperBroker
from engine.base_engine import BaseEngine, EngineResult
from lifecycle.exits import ExitReason, ExitRules
from lifecycle.manager import PositionLifecycleManager
from market_data.client import MarketDataSource
from market_data.loader import HistoricalDataLoader
from patterns.base import PatternDetector
from patterns.registry import build_detector
from rules.engine import rule_matches
from rules.filters import check_confidence
from shared.errors import InsufficientData
from shared.models.models import Candle, CompletedTrade, EquityPoint, Position, TradingRule
from shared.utils.logging import setup_logger
from sizing.base import size_order
from sizing.pct_equity import PctEquitySizer
from strategy.regime import RegimeConfig, detect_regime
from utils.metrics import compute_metrics
from utils.trade_logger import export_equity_csv, export_trades_csv

WARMUP_BARS = 10
MIN_DAILY_BARS = 10
MIN_INTRADAY_BARS = 20
INTRADAY_MIN_NOTIONAL = 10.0


def parse_iso(val: str | datetime) -> datetime:
    """解析 ISO 时间为 UTC datetime；naive 时间按 UTC 处理。"""
    if isinstance(val, datetime):
        dt = val
    else:
        dt = datetime.fromisoformat(str(val).replace("Z", "+00:00"))
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


@dataclass
class BacktestConfig:
    symbol: str
    start: str | datetime
    end: str | datetime
    initial_capital: float = 10000.0
    position_size_percent: float = 10.0
    rules: list[TradingRule] = field(default_factory=list)
    intraday: bool = False
    interval: str = "1d"
    use_rule_exits: bool = True
    regime: RegimeConfig = field(default_factory=RegimeConfig)

    @property
    def min_bars(self) -> int:
        return MIN_INTRADAY_BARS if self.intraday else MIN_DAILY_BARS

    @property
    def unit_label(self) -> str:
        return "candles" if self.intraday else "days"


@dataclass
class BacktestResult:
    config: BacktestConfig
    trades: list[CompletedTrade]
    metrics: dict
    equity_curve: list[EquityPoint]
    id: str = field(default_factory=lambda: uuid4().hex)
    run_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


def validate_history(cfg: BacktestConfig, candles: Sequence[Candle]) -> list[Candle]:
    """校验原始与区间内的数据量，返回按时间升序、落在 [start, end] 内的 K 线。"""
    n = len(candles)
    if n == 0:
        raise InsufficientData(f"No historical data returned for {cfg.symbol}", symbol=cfg.symbol, rows=0)
    if n < cfg.min_bars:
        raise InsufficientData(
            f"Insufficient historical data for {cfg.symbol}. Only {n} {cfg.unit_label} available.",
            symbol=cfg.symbol,
            rows=n,
        )
    start, end = parse_iso(cfg.start), parse_iso(cfg.end)
    window = sorted((c for c in candles if start <= parse_iso(c.ts) <= end), key=lambda c: parse_iso(c.ts))
    if len(window) < cfg.min_bars:
        raise InsufficientData(
            f"Not enough data in selected date range for {cfg.symbol}. Only {len(window)} {cfg.unit_label} available.",
            symbol=cfg.symbol,
            rows=len(window),
        )
    return window


class BacktestEngine(BaseEngine):
    """单次回测引擎。

    Parameters
    ----------
    cfg:
        回测配置（品种、区间、资金、规则）。
    candles:
        直接给定的历史 K 线；缺省时依次尝试 data_dir 下的 CSV 与行情数据源。
    source:
        行情数据源；这里的拉取失败是致命错误（ProviderError 直接抛出）。
    detector:
        形态检测器；缺省为内置 MACD 交叉检测器。
    output_dir:
        给定时导出 trades.csv / equity.csv。
    """

    def __init__(
        self,
        cfg: BacktestConfig,
        *,
        candles: Sequence[Candle] | None = None,
        source: MarketDataSource | None = None,
        data_dir: str | None = None,
        detector: PatternDetector | None = None,
        output_dir: str | Path | None = None,
        quiet: bool = True,
    ):
        self.cfg = cfg
        self._candles = list(candles) if candles is not None else None
        self._source = source
        self._data_dir = data_dir
        self.detector = detector or build_detector(None)
        self._output_dir = Path(output_dir) if output_dir else None
        self.quiet = quiet
        self.logger = setup_logger("backtest")

        self.broker: PaperBroker | None = None
        self.result: BacktestResult | None = None

    def run(self) -> EngineResult:
        result = self.run_backtest()
        summary = {
            "symbol": self.cfg.symbol,
            "bars": len(result.equity_curve) + WARMUP_BARS,
            "trades": len(result.trades),
            "metrics": result.metrics,
        }
        artifacts: dict = {"result": result}
        if self._output_dir is not None:
            artifacts.update(self._export(result, self._output_dir))
        if not self.quiet:
            self.logger.info("Backtest summary: %s", summary)
        return EngineResult(summary=summary, artifacts=artifacts)

    def _load_candles(self) -> list[Candle]:
        if self._candles is not None:
            return self._candles
        start, end = parse_iso(self.cfg.start), parse_iso(self.cfg.end)
        if self._data_dir is not None:
            loader = HistoricalDataLoader(self._data_dir, source=self._source)
            return loader.load_klines_for_backtest(self.cfg.symbol, self.cfg.interval, start, end)
        if self._source is None:
            raise ValueError("BacktestEngine needs candles, a data_dir or a market data source")
        return self._source.fetch_candles(self.cfg.symbol, self.cfg.interval, start=start, end=end)

    def _active_rules(self) -> list[TradingRule]:
        sym = self.cfg.symbol.upper()
        return [r for r in self.cfg.rules if r.enabled and r.symbol.upper() == sym]

    def run_backtest(self) -> BacktestResult:
        """执行回测；要么返回完整结果，要么在开始前抛出异常。"""
        cfg = self.cfg
        candles = validate_history(cfg, self._load_candles())
        rules = self._active_rules()
        rules_by_id = {r.id: r for r in rules}

        broker = PaperBroker(cfg.initial_capital, name="backtest-broker", quiet=True)
        self.broker = broker
        lifecycle = PositionLifecycleManager(
            broker, holding_unit="hours" if cfg.intraday else "days", quiet=True, logger=self.logger
        )
        trades: list[CompletedTrade] = []
        equity_curve: list[EquityPoint] = []
        lookback = max(WARMUP_BARS, self.detector.lookback)
        regime_window = max(cfg.regime.lookback_days, cfg.regime.sma_slow_period)

        for i in range(WARMUP_BARS, len(candles)):
            candle = candles[i]
            ts, price = parse_iso(candle.ts), candle.close
            # 截至当前 K 线（含）的市场状态：开仓时记录，持仓时用于状态反转离场
            regime = detect_regime(candles[max(0, i + 1 - regime_window):i + 1], cfg.regime).regime

            for pos in broker.open_positions():
                rule = rules_by_id.get(pos.rule_id or "")
                exits = ExitRules.from_rule(rule) if (rule and cfg.use_rule_exits) else ExitRules()
                trade = lifecycle.process(pos, price, ts, exits, regime, rule_name=rule.name if rule else "")
                if trade is not None:
                    trades.append(trade)

            window = candles[max(0, i - lookback):i]
            for match in self.detector.detect(window):
                for rule in rules:
                    if not rule_matches(rule, rule.symbol, match):
                        continue
                    if not check_confidence(rule, match.confidence).passed:
                        continue
                    trade = self._apply_rule(broker, lifecycle, rule, price, ts, regime)
                    if trade is not None:
                        trades.append(trade)

            marks = {p.symbol: price for p in broker.open_positions()}
            equity_curve.append(EquityPoint(date=ts, equity=broker.equity(marks)))

        last = candles[-1]
        last_ts = parse_iso(last.ts)
        for pos in broker.open_positions():
            rule = rules_by_id.get(pos.rule_id or "")
            trades.append(
                lifecycle.close(pos, last.close, last_ts, ExitReason.END_OF_PERIOD, rule_name=rule.name if rule else "")
            )

        metrics = compute_metrics(
            trades, equity_curve, initial_capital=cfg.initial_capital, final_capital=broker.cash
        )
        self.result = BacktestResult(config=cfg, trades=trades, metrics=metrics, equity_curve=equity_curve)
        return self.result

    def _apply_rule(
        self,
        broker: PaperBroker,
        lifecycle: PositionLifecycleManager,
        rule: TradingRule,
        price: float,
        ts: datetime,
        regime: str | None = None,
    ) -> CompletedTrade | None:
        direction = rule.position_direction
        existing: Position | None = broker.get_position(rule.symbol, direction)
        if not rule.is_entry:
            if existing is None:
                return None
            return lifecycle.close(existing, price, ts, ExitReason.SIGNAL, rule_name=rule.name)
        if existing is not None:
            return None

        shares = self._entry_size(broker, price, short=direction == "short")
        if shares <= 0:
            return None
        if direction == "short":
            broker.open_short(rule.symbol, shares, price, ts=ts, notes=rule.name, rule_id=rule.id, regime=regime)
        else:
            broker.buy(rule.symbol, shares, price, ts=ts, notes=rule.name, rule_id=rule.id, regime=regime)
        return None

    def _entry_size(self, broker: PaperBroker, price: float, *, short: bool) -> float:
        """日线：floor(现金 × 比例 / 价格) 整股；日内：min(组合价值 × 比例, 现金) / 价格，至少 $10。"""
        cfg = self.cfg
        margin = SHORT_MARGIN_RATIO if short else 1.0
        if cfg.intraday:
            return size_order(
                PctEquitySizer(cfg.position_size_percent),
                price=price,
                cash=broker.cash,
                portfolio_value=broker.equity(),
                fractional=True,
                qty_step=1e-8,
                min_notional=INTRADAY_MIN_NOTIONAL,
                margin_ratio=margin,
            )
        return size_order(
            PctEquitySizer(cfg.position_size_percent),
            price=price,
            cash=broker.cash,
            portfolio_value=broker.cash,
            fractional=False,
            min_notional=0.0,
            margin_ratio=margin,
        )

    @staticmethod
    def _export(result: BacktestResult, out_dir: Path) -> dict[str, str]:
        trades_path = export_trades_csv(result.trades, out_dir / "trades.csv")
        equity_path = export_equity_csv(result.equity_curve, out_dir / "equity.csv")
        return {"trades_csv": str(trades_path), "equity_csv": str(equity_path)}


def run_backtest(cfg: BacktestConfig, candles: Sequence[Candle], detector: PatternDetector | None = None) -> BacktestResult:
    """便捷入口：给定 K 线直接回测。"""
    return BacktestEngine(cfg, candles=candles, detector=detector).run_backtest()
