"""Configuration checks, device log storage and firmware upgrade logic for networked lidars."""

__version__ = "0.1.0"