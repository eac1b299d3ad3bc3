"""Selection of the bundle that will be priced for a requested duration."""

from typing import Sequence, Optional
import logging

from ..core.models import Bundle
from ..core.exceptions import NoBundleAvailableError, NoSuitableBundleError

logger = logging.getLogger(__name__)


class BundleSelector:
    """Picks the exact-duration bundle, else the shortest one covering the request.

    When no candidate covers the requested duration the selection fails; there
    is no fallback to the longest bundle.
    """

    def select_optimal_bundle(self, candidates: Sequence[Bundle], requested_duration: int) -> Bundle:
        if not candidates:
            raise NoBundleAvailableError("No bundles available for pricing")

        for bundle in candidates:
            if bundle.duration == requested_duration:
                return bundle

        covering = sorted(
            (b for b in candidates if b.duration >= requested_duration),
            key=lambda b: b.duration,
        )
        if not covering:
            longest = max(b.duration for b in candidates)
            logger.warning(
                f"No bundle covers {requested_duration} days (longest available: {longest} days)"
            )
            raise NoSuitableBundleError(
                f"No bundle covers the requested duration of {requested_duration} days",
                details={'requested_duration': requested_duration, 'longest_available': longest},
            )

        selected = covering[0]
        logger.debug(
            f"Selected {selected.id} ({selected.duration} days) for {requested_duration} requested days"
        )
        return selected

    @staticmethod
    def calculate_unused_days(bundle: Bundle, requested_duration: int) -> int:
        return max(0, bundle.duration - requested_duration)

    @staticmethod
    def find_previous_duration(candidates: Sequence[Bundle], requested_duration: int) -> Optional[int]:
        """Largest candidate duration not exceeding the requested duration."""
        durations = [b.duration for b in candidates if b.duration <= requested_duration]
        return max(durations) if durations else None
