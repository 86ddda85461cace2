"""CLI entry point for veostudio.cli module.

Enables execution via: python -m veostudio.cli
"""

from veostudio.cli.reconcile_jobs import main

if __name__ == "__main__":
    raise SystemExit(main())
