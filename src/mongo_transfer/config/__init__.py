"""
Configuration management for the transfer module.
"""

from .config_loader import SUPPORTED_FORMATS, SUPPORTED_STRATEGIES, TransferConfig

__all__ = [
    "SUPPORTED_FORMATS",
    "SUPPORTED_STRATEGIES",
    "TransferConfig",
]
