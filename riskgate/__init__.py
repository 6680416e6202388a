"""riskgate - Pre-trade risk gate and bar-replay backtest simulator.

Every order, live or simulated, passes through the same risk engine
before it is allowed to fill.
"""

__version__ = "0.1.0"
