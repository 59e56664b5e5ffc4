"""
Configuration package for the Auto-Reply Engine.

Modules:
    settings: Centralized configuration using Pydantic Settings
    prompts: AI prompts and deterministic fallback replies
"""

from config.settings import Settings, settings

__all__ = ["Settings", "settings"]
