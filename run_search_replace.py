"""Convenience shim to run the search-and-replace workflow."""

from __future__ import annotations

import sys

from src.pipeline.runner import main


if __name__ == "__main__":
    sys.exit(main(sys.argv[1:]))
