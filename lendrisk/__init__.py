"""Client-side risk engine and oracle-crank planner for a lending protocol."""

__version__ = "0.1.0"
