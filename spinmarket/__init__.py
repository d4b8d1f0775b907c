"""
Spin market: authoritative core of a multiplayer party-game wheel with a
stock market driven by spin outcomes.
"""

__version__ = "0.1.0"
