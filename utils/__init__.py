"""
Utility modules for the comparables engine.
"""

from .config import Config

__all__ = ["Config"]
