"""Allow running as ``python -m storeapp_builder``."""

from storeapp_builder.cli import app

app(prog_name="storeapp-builder")
