"""Console script entrypoint (``flowpilot``)."""

from __future__ import annotations

from flowpilot.automation.main import main

__all__ = ["main"]


if __name__ == "__main__":
    raise SystemExit(main())
