"""prodcli: command-line client for the Productive.io API."""

__version__ = "0.1.0"
