"""Selection of a usable export location for a share."""

from typing import Callable, Sequence

from .manila.models import ExportLocation

ExportLocationPredicate = Callable[[ExportLocation], bool]


def any_export_location(location: ExportLocation) -> bool:
    """Predicate matching any export location."""
    return True


def find_export_location(
    locations: Sequence[ExportLocation],
    predicate: ExportLocationPredicate = any_export_location,
) -> int:
    """Search for an export location and return its index into ``locations``.

    Eligible locations are not admin-only, have a non-empty path and satisfy
    ``predicate``. A preferred eligible location wins over a non-preferred
    one, and among equals the lowest index wins.

    Raises:
        ValueError: No eligible export location, or the predicate failed
    """
    first_match_not_preferred = None

    for index, location in enumerate(locations):
        if location.is_admin_only or not location.path.strip():
            continue
        if not predicate(location):
            continue
        if location.preferred:
            return index
        if first_match_not_preferred is None:
            first_match_not_preferred = index

    if first_match_not_preferred is None:
        raise ValueError("no match, or no suitable non-admin export locations available")
    return first_match_not_preferred
