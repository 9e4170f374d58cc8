"""Dual-asset (CORE + BTC) yield vault accounting."""

from typing import NoReturn

__version__ = "0.1.0"


def _entry_point() -> NoReturn:
    """Entry point for the vaulter-core script."""
    import sys

    from vaulter_core.cli import main

    raise SystemExit(main(sys.argv[1:]))


def _clear_cache_entry_point() -> NoReturn:
    """Entry point for clearing the registry cache."""
    from vaulter_core.cache import clear_cache

    clear_cache()
    raise SystemExit(0)
