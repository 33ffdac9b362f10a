"""Logging, notifications, usage statistics, OS permissions and self-updates for a hotkey launcher."""

__version__ = "0.1.0"
__all__ = ["logger", "notify", "stats", "permission", "updater"]