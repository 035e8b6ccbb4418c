"""
Runtrack CLI - Command-line interface for tracking service control.

This package provides a CLI for sending MQTT commands and test pings to the
tracking service without manually writing JSON.

Usage:
    runtrack-cli start p-042 city-10k
    runtrack-cli standings city-10k --limit 10
    runtrack-cli view city-10k 14
    runtrack-cli ping p-042 city-10k 37.5665 126.9780
    runtrack-cli status
"""

__version__ = "1.0.0"
