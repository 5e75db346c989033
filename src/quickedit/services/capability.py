"""Backend capability detection for choosing mutation strategies."""

from typing import Awaitable, Callable, Optional

import structlog


logger = structlog.get_logger()

# First SiYuan release whose insertBlock accepts multi-paragraph markdown
BATCH_INSERT_MIN_VERSION = (3, 2, 1)


def parse_version(version: Optional[str]) -> Optional[tuple[int, int, int]]:
    """
    Parse a dotted version string into a (major, minor, patch) tuple.

    Missing components count as 0; any non-numeric component makes the
    version unparseable.

    Example:
        >>> parse_version("3.2.1")
        (3, 2, 1)
        >>> parse_version("3.1") is None
        False
        >>> parse_version("unknown") is None
        True
    """
    if not version:
        return None
    parts = version.strip().lstrip("v").split(".")
    try:
        numbers = [int(p) for p in parts[:3]]
    except ValueError:
        return None
    while len(numbers) < 3:
        numbers.append(0)
    return numbers[0], numbers[1], numbers[2]


class CapabilityDetector:
    """
    One-time version check, cached for the detector's lifetime.

    Example:
        >>> detector = CapabilityDetector(client.get_version)
        >>> await detector.supports_batch_insert()
        True
    """

    def __init__(
        self,
        fetch_version: Callable[[], Awaitable[Optional[str]]],
        minimum: tuple[int, int, int] = BATCH_INSERT_MIN_VERSION,
    ):
        self._fetch_version = fetch_version
        self._minimum = minimum
        self._version: Optional[str] = None
        self._checked = False

    @property
    def version(self) -> Optional[str]:
        """Detected version, or None before probing / when unknown."""
        return self._version

    async def detect_version(self) -> Optional[str]:
        """Fetch the backend version once; failures are cached as unknown."""
        if self._checked:
            return self._version
        try:
            self._version = await self._fetch_version()
            logger.info("backend_version_detected", version=self._version)
        except Exception as e:
            logger.warning("backend_version_detection_failed", error=str(e))
            self._version = None
        self._checked = True
        return self._version

    async def supports_batch_insert(self) -> bool:
        """True if the backend version is at least the batch-insert minimum."""
        parsed = parse_version(await self.detect_version())
        if parsed is None:
            return False
        return parsed >= self._minimum
