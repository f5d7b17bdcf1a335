"""
Utility modules for the loss engine.
"""

from .config import Config

__all__ = ["Config"]
