"""
Allow running appealground as a module: ``python -m appealground``.

This delegates to the CLI entry point so that both
``appealground`` (console script) and ``python -m appealground``
behave identically.
"""

from appealground.cli import main

if __name__ == "__main__":
    main()
