"""Turn budget with escalating advisories as the budget is consumed."""

from __future__ import annotations

import math
from dataclasses import dataclass

DEFAULT_MAX_TURNS = 25


@dataclass
class TurnBudget:
    max_turns: int = DEFAULT_MAX_TURNS
    current_turn: int = 0

    def __post_init__(self) -> None:
        if self.max_turns < 1:
            raise ValueError("max_turns must be at least 1")

    @property
    def warn_at_50(self) -> int:
        return math.floor(self.max_turns * 0.5)

    @property
    def warn_at_75(self) -> int:
        return math.floor(self.max_turns * 0.75)

    @property
    def warn_at_90(self) -> int:
        return math.floor(self.max_turns * 0.9)

    @property
    def remaining(self) -> int:
        return self.max_turns - self.current_turn

    @property
    def exhausted(self) -> bool:
        return self.current_turn >= self.max_turns

    @property
    def is_final_turn(self) -> bool:
        return self.current_turn == self.max_turns

    def start_turn(self) -> int:
        if self.exhausted:
            raise RuntimeError("turn budget exhausted")
        self.current_turn += 1
        return self.current_turn

    def advisory(self) -> str:
        """Text appended to the system prompt for the current turn."""

        turn = self.current_turn
        if turn == 0:
            return ""
        text = ""
        if self.warn_at_90 and turn >= self.warn_at_90:
            text = (
                f"\n\nFINAL WARNING: Only {self.remaining} tool call(s) left! You MUST provide your final "
                "response NOW with the information you have. Do not call more tools unless completely necessary."
            )
        elif self.warn_at_75 and turn >= self.warn_at_75:
            text = (
                "\n\nBUDGET WARNING: Only 25% of tool calls remaining! You MUST start your response now. "
                "Use remaining tools only if absolutely critical."
            )
        elif self.warn_at_50 and turn >= self.warn_at_50:
            text = (
                "\n\nBUDGET CHECK: You're halfway through your tool budget. Start being more decisive - focus on "
                "the most important information and begin formulating your response."
            )
        if self.is_final_turn:
            text += (
                "\n\nTOOL LIMIT REACHED: This is your LAST turn. You MUST respond with your analysis and any code "
                "changes NOW. Do NOT call any more tools."
            )
        return text
