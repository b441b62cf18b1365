"""Group membership diff.

Both inputs are treated as sets of group names. Output order follows the
scan order of the input being scanned so results are deterministic.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field


@dataclass(frozen=True)
class GroupDiff:
    """Membership changes needed to turn ``current`` into ``desired``."""

    to_add: list[str] = field(default_factory=list)
    to_remove: list[str] = field(default_factory=list)

    @property
    def empty(self) -> bool:
        return not self.to_add and not self.to_remove


def _dedupe(values: Iterable[str]) -> list[str]:
    # dict preserves insertion order; first occurrence wins
    return list(dict.fromkeys(values))


def left_difference(left: Sequence[str], right: Sequence[str]) -> list[str]:
    """Elements of ``left`` absent from ``right``, in ``left`` order, without duplicates."""
    right_set = set(right)
    return [value for value in _dedupe(left) if value not in right_set]


def diff_groups(desired: Sequence[str], current: Sequence[str]) -> GroupDiff:
    """Compute the groups to join and to leave.

    Args:
        desired: Group names the principal should belong to.
        current: Group names the principal is known to belong to.

    Returns:
        GroupDiff with ``to_add`` in ``desired`` order and ``to_remove``
        in ``current`` order. The two lists are disjoint.
    """
    return GroupDiff(
        to_add=left_difference(desired, current),
        to_remove=left_difference(current, desired),
    )


def apply_diff(current: Sequence[str], diff: GroupDiff) -> list[str]:
    """Return ``current`` with additions appended and removals dropped."""
    removed = set(diff.to_remove)
    result = [group for group in current if group not in removed]
    result.extend(group for group in diff.to_add if group not in result)
    return result
