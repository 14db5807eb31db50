"""SwingPilot 统一命令行入口。

子命令：

- `backtest`：单品种历史回测（形态/指标交叉规则 + 规则级止盈止损）。
- `regime`：输出某品种当前的市场状态分析。
- `signals`：市场状态 + 对应策略生成的交易信号。
- `bots`：在同一个事件循环上运行 DCA / 网格 / 形态扫描 / 持仓监控。
"""

from __future__ import annotations

import argparse
import json
from dataclasses import dataclass
from typing import Any

from engine.backtest_engine import BacktestConfig, BacktestEngine
from engine.signal_pipeline import analyze_symbol
from engine.trading_engine import TradingEngine, rule_from_spec
from market_data.client import get_market_data
from market_data.loader import load_candles_from_csv
from rules.profiles import build_rule
from shared.config.config_loader import DEFAULT_CONFIG_PATH, load_config
from shared.config.schema import MainConfig
from shared.models.models import Candle, TradingRule


@dataclass
class CliArgs:
    """命令行参数。

    config: 配置文件路径
    task: backtest / regime / signals / bots
    """
    config: str
    task: str
    symbol: str | None = None
    start: str | None = None
    end: str | None = None
    csv: str | None = None
    intraday: bool = False
    interval: str | None = None
    output_dir: str | None = None
    max_ticks: int | None = None  # 仅用于调试：每个 bot 触发多少次后退出
    quiet: bool = False


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="swingpilot", description="SwingPilot 统一入口")

    def _add_config_arg(p: argparse.ArgumentParser, *, default: Any) -> None:
        p.add_argument("--config", default=default, help=f"配置文件路径 (默认: {DEFAULT_CONFIG_PATH})")

    # 允许 `main.py --config ... backtest` 与 `main.py backtest --config ...`
    _add_config_arg(parser, default=DEFAULT_CONFIG_PATH)
    parser.add_argument("--quiet", action="store_true", help="不打印结果")
    sub = parser.add_subparsers(dest="task")

    p_bt = sub.add_parser("backtest", help="单品种回测")
    _add_config_arg(p_bt, default=argparse.SUPPRESS)
    p_bt.add_argument("--symbol", required=True)
    p_bt.add_argument("--start", required=True, help="ISO 日期，如 2024-01-01")
    p_bt.add_argument("--end", required=True)
    p_bt.add_argument("--csv", default=None, help="历史 K 线 CSV（缺省走数据目录/行情源）")
    p_bt.add_argument("--intraday", action="store_true", help="日内模式（至少 20 根 K 线，碎股）")
    p_bt.add_argument("--interval", default=None)
    p_bt.add_argument("--output-dir", default=None, help="导出 trades.csv / equity.csv")

    for name, help_text in (("regime", "市场状态分析"), ("signals", "市场状态 + 交易信号")):
        p = sub.add_parser(name, help=help_text)
        _add_config_arg(p, default=argparse.SUPPRESS)
        p.add_argument("--symbol", required=True)
        p.add_argument("--csv", default=None)

    p_bots = sub.add_parser("bots", help="运行定时 bot")
    _add_config_arg(p_bots, default=argparse.SUPPRESS)
    p_bots.add_argument("--max-ticks", type=int, default=None, help="每个 bot 触发多少次后退出")

    return parser


def parse_args(argv: list[str] | None = None) -> CliArgs:
    ns = build_parser().parse_args(argv)
    return CliArgs(
        config=str(getattr(ns, "config", DEFAULT_CONFIG_PATH)),
        task=ns.task or "bots",
        symbol=getattr(ns, "symbol", None),
        start=getattr(ns, "start", None),
        end=getattr(ns, "end", None),
        csv=getattr(ns, "csv", None),
        intraday=bool(getattr(ns, "intraday", False)),
        interval=getattr(ns, "interval", None),
        output_dir=getattr(ns, "output_dir", None),
        max_ticks=getattr(ns, "max_ticks", None),
        quiet=bool(getattr(ns, "quiet", False)),
    )


def default_backtest_rules(symbol: str) -> list[TradingRule]:
    """没有配置规则时：MACD 金叉买入，死叉卖出。"""
    return [
        build_rule(symbol, direction="buy", trigger="indicator_crossover", macd_settings={"crossover_type": "bullish"}),
        build_rule(symbol, direction="sell", trigger="indicator_crossover", macd_settings={"crossover_type": "bearish"}),
    ]


def _history(cfg: MainConfig, symbol: str, csv_path: str | None) -> list[Candle]:
    if csv_path:
        return load_candles_from_csv(csv_path, symbol)
    count = max(cfg.regime.lookback_days, cfg.regime.sma_slow_period + 1)
    return get_market_data(cfg.market_data).fetch_candles(symbol, "1d", count)


def run_backtest_task(cfg: MainConfig, args: CliArgs) -> dict[str, Any]:
    symbol = str(args.symbol)
    rules = [rule_from_spec(s) for s in cfg.rules if s.symbol.upper() == symbol.upper()]
    bt_cfg = BacktestConfig(
        symbol=symbol,
        start=args.start,
        end=args.end,
        initial_capital=cfg.backtest.initial_capital,
        position_size_percent=cfg.backtest.position_size_percent,
        rules=rules or default_backtest_rules(symbol),
        intraday=args.intraday or cfg.backtest.intraday,
        interval=args.interval or cfg.backtest.interval,
        use_rule_exits=cfg.backtest.use_rule_exits,
        regime=cfg.regime,
    )
    candles = load_candles_from_csv(args.csv, symbol) if args.csv else None
    engine = BacktestEngine(
        bt_cfg,
        candles=candles,
        source=None if candles is not None else get_market_data(cfg.market_data),
        data_dir=None if candles is not None else cfg.backtest.data_dir,
        output_dir=args.output_dir,
    )
    result = engine.run()
    return {**result.summary, **{k: v for k, v in (result.artifacts or {}).items() if k != "result"}}


def main(argv: list[str] | None = None) -> Any:
    """程序主入口；返回对应子命令的 summary dict。"""
    args = parse_args(argv)
    cfg = load_config(args.config)

    if args.task == "backtest":
        summary = run_backtest_task(cfg, args)
    elif args.task in ("regime", "signals"):
        candles = _history(cfg, str(args.symbol), args.csv)
        analysis = analyze_symbol(str(args.symbol), candles, cfg.regime, cfg.swing.strategies)
        summary = analysis.to_dict()
        if args.task == "regime":
            summary.pop("signals")
    elif args.task == "bots":
        summary = TradingEngine(cfg_obj=cfg, max_ticks=args.max_ticks).run().summary
    else:
        raise ValueError(f"Unknown task: {args.task}")

    if not args.quiet:
        print(json.dumps(summary, indent=2, ensure_ascii=False, default=str))
    return summary


if __name__ == "__main__":
    main()
