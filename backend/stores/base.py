"""Shared error bookkeeping for the state stores."""
import logging
from contextlib import contextmanager
from typing import Iterator, Optional


class StoreBase:
    """
    Tracks the last error of a store.

    Failures are recorded on ``error`` / ``error_category`` and re-raised so
    callers can both react locally and read the shared last-error field.
    """

    log_tag = "STORE"

    def __init__(self):
        self.is_loading = False
        self.error: Optional[str] = None
        self.error_category: Optional[str] = None
        self._logger = logging.getLogger(type(self).__module__)

    def clear_error(self) -> None:
        self.error = None
        self.error_category = None

    def _record_error(self, action: str, exc: Exception) -> None:
        self.error = str(exc)
        self.error_category = getattr(exc, "category", "persistence")
        self._logger.error(f"[{self.log_tag}] {action} failed ({self.error_category}): {exc}")

    @contextmanager
    def _tracked(self, action: str, loading: bool = False) -> Iterator[None]:
        self.clear_error()
        if loading:
            self.is_loading = True
        try:
            yield
        except Exception as e:
            self._record_error(action, e)
            raise
        finally:
            if loading:
                self.is_loading = False
