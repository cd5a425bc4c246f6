"""CLI entry point for wardrobe.cli module.

Enables execution via: python -m wardrobe.cli (runs one reconciliation sweep)
"""

from wardrobe.cli.reconcile_jobs import main

if __name__ == "__main__":
    main()
