"""Pomolog - Pomodoro timer sessions and cycle tracking."""

__version__ = "0.1.0"
