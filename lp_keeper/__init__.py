"""
LP Keeper - Concentrated Liquidity Rebalancing Engine

Monitors concentrated-liquidity positions, decides on a recurring cycle
whether a position's precision curve has drifted far enough from the market
price to warrant a rebalance, and queues and executes that work with
priority ordering and retry handling.
"""

__version__ = "0.1.0"
__author__ = "LP Keeper Team"
