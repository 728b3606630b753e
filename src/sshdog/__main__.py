"""Allow ``python -m sshdog``."""

from sshdog.cli import cli

if __name__ == "__main__":
    cli()
