"""Token-bounded grouping of subtitle segments."""

from __future__ import annotations

from typing import List, Sequence

from .structures import Group, Segment
from .tokens import TokenEstimator

# Size of the "\nN. " enumeration prefix added to each rendered line.
DEFAULT_DELIMITER_OVERHEAD = 4


class GroupBuilder:
    """Aggregates ordered segments into groups within a token budget."""

    def __init__(
        self,
        budget: int,
        estimator: TokenEstimator,
        *,
        delimiter_overhead: int = DEFAULT_DELIMITER_OVERHEAD,
    ) -> None:
        if budget <= 0:
            raise ValueError("Token budget must be a positive integer.")
        self.budget = budget
        self.estimator = estimator
        self.delimiter_overhead = delimiter_overhead

    def build(self, segments: Sequence[Segment]) -> List[Group]:
        groups: List[Group] = []
        group_segments: List[Segment] = []
        group_cost = 0
        running_total = 0
        group_id = 1

        for segment in segments:
            cost = self.estimator.count(segment.content)

            # running_total already counts the delimiter after every grouped segment.
            if running_total + cost <= self.budget:
                group_segments.append(segment)
                group_cost = running_total + cost
                running_total += cost + self.delimiter_overhead
                continue

            # Oversized segments still land here and form a group of their own.
            if group_segments:
                groups.append(Group(group_id=group_id, segments=group_segments, cost=group_cost))
                group_id += 1
            group_segments = [segment]
            group_cost = cost
            running_total = cost + self.delimiter_overhead

        if group_segments:
            groups.append(Group(group_id=group_id, segments=group_segments, cost=group_cost))

        return groups
