"""Allow ``python -m pomolog``."""

from pomolog.cli.main import app

if __name__ == "__main__":
    app()
