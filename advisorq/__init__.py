"""AdvisorQ - AI advisor insight orchestration for a personal-finance tracker"""

from __future__ import annotations

__version__ = "1.0.0"
