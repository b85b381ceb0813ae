"""Set reconciliation for membership convergence.

Computes the disjoint add/remove sets that turn an observed set into a
desired one. The elements are opaque: nothing here depends on the
``node:port`` member format, so the same function serves any collection
that is converged one element at a time.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field


@dataclass(frozen=True)
class SetDiff:
    """Elements to add and remove to converge observed onto desired."""

    to_add: frozenset[str] = field(default_factory=frozenset)
    to_remove: frozenset[str] = field(default_factory=frozenset)

    @property
    def is_empty(self) -> bool:
        """True when observed already equals desired."""
        return not self.to_add and not self.to_remove

    def sorted_additions(self) -> list[str]:
        return sorted(self.to_add)

    def sorted_removals(self) -> list[str]:
        return sorted(self.to_remove)

    def apply(self, observed: Iterable[str]) -> frozenset[str]:
        """Return the set that results from applying this diff to ``observed``."""
        return (frozenset(observed) - self.to_remove) | self.to_add


def reconcile_sets(desired: Iterable[str], observed: Iterable[str]) -> SetDiff:
    """Diff a desired set against an observed set.

    Args:
        desired: Elements that should exist.
        observed: Elements that currently exist.

    Returns:
        SetDiff with ``to_remove = observed - desired`` and
        ``to_add = desired - observed``.
    """
    desired_set = frozenset(desired)
    observed_set = frozenset(observed)
    return SetDiff(
        to_add=desired_set - observed_set,
        to_remove=observed_set - desired_set,
    )
