import hashlib
import secrets
from dataclasses import dataclass
from typing import Optional, Sequence

from ..exceptions import NoTicketsError


@dataclass
class WinnerSelection:
    user_id: int
    ticket_id: int
    draw: int
    total_units: int
    seed: Optional[str] = None
    commitment: Optional[str] = None


class DrawService:
    """Weighted winner selection with a reproducible draw"""

    @staticmethod
    def generate_seed() -> str:
        """Генерация криптостойкого серверного сида"""
        return secrets.token_hex(32)

    @staticmethod
    def commit(raffle_id: int, seed: str) -> str:
        return hashlib.sha256(f"{raffle_id}:{seed}".encode()).hexdigest()

    @staticmethod
    def draw_from_seed(raffle_id: int, seed: str, total_units: int) -> int:
        """Map a seed onto a draw in [1, total_units]"""
        if total_units <= 0:
            raise NoTicketsError(f"No tickets found for raffle {raffle_id}")
        digest = hashlib.sha256(f"{raffle_id}:{seed}:{total_units}".encode()).hexdigest()
        return int(digest[:16], 16) % total_units + 1

    @staticmethod
    def verify_draw(raffle_id: int, seed: str, commitment: str,
                    total_units: int, draw: int) -> bool:
        """Проверка честности результата"""
        if DrawService.commit(raffle_id, seed) != commitment:
            return False
        return DrawService.draw_from_seed(raffle_id, seed, total_units) == draw

    @staticmethod
    def pick(tickets: Sequence, draw: int) -> WinnerSelection:
        """Walk tickets in stored order; the first whose running total reaches the draw wins.

        `tickets` are objects with `id`, `user_id` and `quantity`.
        """
        total = sum(t.quantity for t in tickets)
        if total <= 0:
            raise NoTicketsError("No tickets found")
        if draw < 1 or draw > total:
            raise ValueError(f"Draw {draw} outside [1, {total}]")

        cumulative = 0
        for ticket in tickets:
            cumulative += ticket.quantity
            if draw <= cumulative:
                return WinnerSelection(
                    user_id=ticket.user_id,
                    ticket_id=ticket.id,
                    draw=draw,
                    total_units=total,
                )
        # unreachable while quantities are positive
        raise NoTicketsError("No tickets found")

    @staticmethod
    def select_winner(raffle_id: int, tickets: Sequence,
                      forced_draw: Optional[int] = None) -> WinnerSelection:
        """Select the winner of a raffle.

        A fresh seed is generated and the draw is derived from it, so the
        result can be re-verified later from the stored seed, commitment and
        total. `forced_draw` bypasses the seed (manual re-runs and tests).
        """
        total = sum(t.quantity for t in tickets)
        if total <= 0:
            raise NoTicketsError(f"No tickets found for raffle {raffle_id}")

        if forced_draw is not None:
            selection = DrawService.pick(tickets, forced_draw)
            return selection

        seed = DrawService.generate_seed()
        draw = DrawService.draw_from_seed(raffle_id, seed, total)
        selection = DrawService.pick(tickets, draw)
        selection.seed = seed
        selection.commitment = DrawService.commit(raffle_id, seed)
        return selection
