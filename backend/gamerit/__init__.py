"""Gamerit: Reddit-powered betting rounds and meme stock market backend."""

__version__ = "0.1.0"
