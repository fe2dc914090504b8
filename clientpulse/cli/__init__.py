"""CLI module for clientpulse."""
