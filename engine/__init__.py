"""执行引擎层（engine）。

- `BacktestEngine`：单品种历史回测；
- `TradingEngine`：在一个事件循环上运行各定时 bot；
- `signal_pipeline`：单品种的市场状态与信号分析。

各引擎以 `XxxEngine.run() -> EngineResult` 形式对外提供能力，命令行入口为根目录 `main.py`。
"""
