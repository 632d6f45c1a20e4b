"""
User-visible notices (the dashboard's toasts) and console error logging.
"""

import sys
from dataclasses import asdict, dataclass, field
from typing import Dict, List

from techhelp.models import utcnow_iso


@dataclass
class Notice:
    level: str                  # "success", "error" or "info"
    message: str
    created_at: str = field(default_factory=utcnow_iso)


class Notifier:
    """Collects notices until the surface (API response, console) drains them."""

    def __init__(self, echo: bool = False):
        self.notices: List[Notice] = []
        self.echo = echo

    def _push(self, level: str, message: str) -> None:
        self.notices.append(Notice(level, message))
        if self.echo:
            print(f"[{level}] {message}")

    def success(self, message: str) -> None:
        self._push("success", message)

    def error(self, message: str) -> None:
        self._push("error", message)

    def info(self, message: str) -> None:
        self._push("info", message)

    def last(self) -> Notice:
        return self.notices[-1]

    def drain(self) -> List[Dict[str, str]]:
        out = [asdict(n) for n in self.notices]
        self.notices.clear()
        return out


def log_error(context: str, exc: BaseException) -> None:
    """Console log for a failure caught at its call site."""
    print(f"[ERROR] {context}: {exc}", file=sys.stderr)
