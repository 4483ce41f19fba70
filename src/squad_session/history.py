from __future__ import annotations

from typing import Sequence

from loguru import logger

from squad_session.models import ConversationTurn


def estimate_tokens(turns: Sequence[ConversationTurn]) -> int:
    return sum(t.approx_token_count for t in turns)


def truncate_history(
    history: Sequence[ConversationTurn],
    max_turns: int,
    token_budget: int,
    *,
    always_include_latest: bool = True,
    reserve_ratio: float = 0.5,
) -> list[ConversationTurn]:
    """Select the most recent turns that fit in the prompt share of ``token_budget``.

    ``history`` is oldest-first. At most ``max_turns`` turns are considered;
    they are accumulated newest-first while the running estimate stays within
    ``token_budget * (1 - reserve_ratio)`` (the rest is left for the new
    prompt and the response). The result is returned oldest-first.

    When the newest turn alone is over budget it is still returned if
    ``always_include_latest`` is set, so a non-empty history never truncates
    to nothing.
    """
    if max_turns < 0:
        raise ValueError("max_turns must not be negative")
    if token_budget < 0:
        raise ValueError("token_budget must not be negative")
    if not 0.0 <= reserve_ratio < 1.0:
        raise ValueError("reserve_ratio must be in [0, 1)")

    if max_turns == 0 or not history:
        return []

    recent = list(history[-max_turns:])
    allowance = token_budget * (1.0 - reserve_ratio)

    selected: list[ConversationTurn] = []
    total = 0
    for turn in reversed(recent):
        if total + turn.approx_token_count > allowance:
            if not selected and always_include_latest:
                selected.append(turn)
            break
        selected.append(turn)
        total += turn.approx_token_count

    selected.reverse()

    dropped = len(history) - len(selected)
    if dropped:
        logger.debug(
            f"History truncated: kept {len(selected)} of {len(history)} turns "
            f"(~{estimate_tokens(selected):,} tokens, allowance {allowance:,.0f})"
        )
    return selected


class HistoryTruncator:
    def __init__(
        self,
        max_turns: int = 10,
        token_budget: int = 4096,
        *,
        always_include_latest: bool = True,
        reserve_ratio: float = 0.5,
    ):
        self.max_turns = max_turns
        self.token_budget = token_budget
        self.always_include_latest = always_include_latest
        self.reserve_ratio = reserve_ratio

    def truncate(self, history: Sequence[ConversationTurn]) -> list[ConversationTurn]:
        return truncate_history(
            history,
            self.max_turns,
            self.token_budget,
            always_include_latest=self.always_include_latest,
            reserve_ratio=self.reserve_ratio,
        )
