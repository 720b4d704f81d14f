"""flowpilot.

Marketing-automation flows as typed directed graphs:
- structural validation before activation
- an asynchronous interpreter with branching and delayed continuations
- a per-run audit log
"""

__version__ = "0.1.0"

from flowpilot.automation.config import AutomationSettings

__all__ = ["__version__", "AutomationSettings"]
