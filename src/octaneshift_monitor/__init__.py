"""OctaneShift Monitor - gas balance watchlist and top-up alerts."""

__version__ = "0.1.0"
