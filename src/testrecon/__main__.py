# src/testrecon/__main__.py

from testrecon.cli.main import cli

if __name__ == "__main__":
    cli()

# 🔼⚙️
