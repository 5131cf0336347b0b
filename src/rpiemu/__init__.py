"""rpiemu: port and instance allocation for Raspberry Pi OS emulations."""

__version__ = "0.1.0"
