"""
Per-user answer statistics for the dashboard.
"""

from __future__ import annotations

import math
from typing import Iterable, List

from quizstore.records import Response, User, UserStats


def accuracy_percent(correct: int, total: int) -> int:
    """Rounded percentage, halves rounding up. Zero answers give 0."""
    if total <= 0:
        return 0
    return int(math.floor(correct * 100 / total + 0.5))


def compute_user_stats(
    responses: Iterable[Response], users: Iterable[User]
) -> List[UserStats]:
    """
    Builds one stats record per non-deleted user, in the order of ``users``.

    Users without responses are included with zero counts and no
    ``last_answered_at``.
    """
    responses = list(responses)
    stats: List[UserStats] = []
    for user in users:
        if user.is_deleted:
            continue
        mine = [r for r in responses if r.user_id == user.id]
        correct = sum(1 for r in mine if r.is_correct)
        last = max((r.answered_at for r in mine), default=None)
        stats.append(
            UserStats(
                user_id=user.id,
                user_name=user.name,
                correct_count=correct,
                total_answered=len(mine),
                accuracy=accuracy_percent(correct, len(mine)),
                last_answered_at=last,
            )
        )
    return stats


def get_user_stats(db) -> List[UserStats]:
    """Computes stats from the current snapshot held by ``db``."""
    return compute_user_stats(db.list_all_responses(), db.list_users())
