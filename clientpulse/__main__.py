"""
Entry point for running clientpulse as a module: python -m clientpulse
"""

from clientpulse.cli.commands import app

if __name__ == "__main__":
    app()
