"""polystrat - prediction-market strategy engine (mint-split, arbitrage, market making)."""

__version__ = "0.1.0"
