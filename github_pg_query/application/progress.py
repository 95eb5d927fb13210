"""Progress reporting for the search workflow."""
import logging
from typing import Optional


logger = logging.getLogger(__name__)


class ProgressReporter:
    """Reports workflow steps through a logger.

    ``update`` and ``info`` are detail messages, emitted at DEBUG level
    unless ``verbose`` is set.
    """

    def __init__(self, verbose: bool = False, log: Optional[logging.Logger] = None):
        self._verbose = verbose
        self._log = log or logger

    @property
    def _detail_level(self) -> int:
        return logging.INFO if self._verbose else logging.DEBUG

    def start(self, message: str) -> None:
        self._log.info(f"{message}...")

    def update(self, message: str) -> None:
        self._log.log(self._detail_level, f"  -> {message}")

    def success(self, message: str) -> None:
        self._log.info(message)

    def error(self, message: str) -> None:
        self._log.error(message)

    def warning(self, message: str) -> None:
        self._log.warning(message)

    def info(self, message: str) -> None:
        self._log.log(self._detail_level, message)


class NullProgress(ProgressReporter):
    """Progress sink that discards everything."""

    def __init__(self):
        super().__init__(log=logging.getLogger(f"{__name__}.null"))

    def start(self, message: str) -> None:
        pass

    def update(self, message: str) -> None:
        pass

    def success(self, message: str) -> None:
        pass

    def error(self, message: str) -> None:
        pass

    def warning(self, message: str) -> None:
        pass

    def info(self, message: str) -> None:
        pass
