"""Core module - business-line neutral consolidation primitives.

This module contains money arithmetic, periods, domain models, configuration,
errors and logging. It is intentionally independent of any tax authority.

Tax-authority specific logic (MyInvois, sandbox) belongs in /connectors/.
"""

__version__ = "1.0.0"
