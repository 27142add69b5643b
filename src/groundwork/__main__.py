"""Allow running groundwork as ``python -m groundwork``."""

from groundwork.cli.app import app

if __name__ == "__main__":
    app()
