"""Entry point for python -m sessiongate."""

from sessiongate.cli import app

app()
