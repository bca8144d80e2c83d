"""Entry point for running the engine CLI.

Usage:
    python -m face_identity --help
"""

from .cli import main


if __name__ == "__main__":
    main()
