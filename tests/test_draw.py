from types import SimpleNamespace

import pytest

from duxxan.exceptions import NoTicketsError
from duxxan.services.draw import DrawService


def ticket(ticket_id, user_id, quantity):
    return SimpleNamespace(id=ticket_id, user_id=user_id, quantity=quantity)


def test_draw_inside_second_ticket_range_picks_second_owner():
    tickets = [ticket(1, 10, 3), ticket(2, 20, 7)]

    selection = DrawService.pick(tickets, 5)

    assert selection.user_id == 20
    assert selection.ticket_id == 2
    assert selection.total_units == 10


def test_draw_one_picks_first_stored_ticket():
    tickets = [ticket(1, 10, 3), ticket(2, 20, 7), ticket(3, 30, 1)]
    assert DrawService.pick(tickets, 1).user_id == 10


def test_draw_total_picks_last_stored_ticket():
    tickets = [ticket(1, 10, 3), ticket(2, 20, 7), ticket(3, 30, 1)]
    assert DrawService.pick(tickets, 11).user_id == 30


def test_boundary_belongs_to_earlier_ticket():
    tickets = [ticket(1, 10, 3), ticket(2, 20, 7)]
    assert DrawService.pick(tickets, 3).user_id == 10
    assert DrawService.pick(tickets, 4).user_id == 20


def test_same_user_tickets_are_summed_for_weighting():
    tickets = [ticket(1, 10, 2), ticket(2, 20, 1), ticket(3, 10, 2)]
    winners = [DrawService.pick(tickets, d).user_id for d in range(1, 6)]
    assert winners.count(10) == 4
    assert winners.count(20) == 1


def test_no_tickets_fails():
    with pytest.raises(NoTicketsError):
        DrawService.select_winner(1, [])


def test_out_of_range_draw_rejected():
    tickets = [ticket(1, 10, 3)]
    with pytest.raises(ValueError):
        DrawService.pick(tickets, 4)
    with pytest.raises(ValueError):
        DrawService.pick(tickets, 0)


def test_seeded_draw_is_reproducible_and_verifiable():
    tickets = [ticket(1, 10, 3), ticket(2, 20, 7)]

    selection = DrawService.select_winner(42, tickets)

    assert 1 <= selection.draw <= 10
    assert selection.seed and selection.commitment
    assert DrawService.draw_from_seed(42, selection.seed, 10) == selection.draw
    assert DrawService.verify_draw(42, selection.seed, selection.commitment, 10, selection.draw)
    assert not DrawService.verify_draw(43, selection.seed, selection.commitment, 10, selection.draw)


def test_forced_draw_skips_seed():
    tickets = [ticket(1, 10, 3), ticket(2, 20, 7)]
    selection = DrawService.select_winner(1, tickets, forced_draw=5)
    assert selection.user_id == 20
    assert selection.seed is None
