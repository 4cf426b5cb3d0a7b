"""Allow running with `python -m edgeserver`."""

from edgeserver.main import run

if __name__ == "__main__":
    run()
