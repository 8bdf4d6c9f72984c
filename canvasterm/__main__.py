"""
Package entry point.

Allows running the application via:

    python -m canvasterm

This simply forwards execution to canvasterm.cli.main().
"""

from canvasterm.cli import main

if __name__ == "__main__":
    main()
