import random

import pytest

from catalog import CARD_IDS, CARDS, board_from_payload, generate_board, get_card, shuffled_deck
from patterns import candidate_lines, check_win, winning_line


def make_board():
    # Cards 1..16 in grid order, so index i holds card id i + 1
    return [get_card(card_id) for card_id in range(1, 17)]


ALL_CALLED = list(range(1, 55))


def test_catalog_has_54_unique_cards():
    assert len(CARDS) == 54
    assert CARD_IDS == list(range(1, 55))
    assert len({card.name for card in CARDS}) == 54
    assert get_card(1).name == "El Gallo"
    assert get_card(54).name == "La Rana"
    assert get_card(99) is None


def test_shuffled_deck_is_a_permutation():
    deck = shuffled_deck(random.Random(7))
    assert sorted(deck) == CARD_IDS
    assert deck != CARD_IDS


def test_shuffled_deck_is_deterministic_with_seeded_rng():
    assert shuffled_deck(random.Random(3)) == shuffled_deck(random.Random(3))


def test_generate_board_has_16_distinct_cards():
    board = generate_board(random.Random(11))
    assert len(board) == 16
    assert len({card.id for card in board}) == 16
    assert generate_board(random.Random(11)) == board


def test_board_from_payload_accepts_ids_and_dicts():
    ids = list(range(20, 36))
    board = board_from_payload(ids)
    assert [card.id for card in board] == ids
    dicts = [card.model_dump(by_alias=True) for card in board]
    assert board_from_payload(dicts) == board


@pytest.mark.parametrize(
    "payload",
    [None, [], list(range(1, 16)), [1] * 16, list(range(50, 66)), ["x"] * 16],
)
def test_board_from_payload_rejects_bad_boards(payload):
    assert board_from_payload(payload) is None


def test_full_requires_every_cell():
    board = make_board()
    assert check_win(board, list(range(16)), "full", None, ALL_CALLED)
    assert not check_win(board, list(range(15)), "full", None, ALL_CALLED)


def test_corners_ignore_pivot():
    """Scenario B: any corner order wins once all four were called."""
    board = make_board()
    called = [1, 4, 13, 16]
    assert check_win(board, [0, 3, 12, 15], "corners", None, called)
    assert check_win(board, [15, 0, 12, 3], "corners", 7, called)


def test_marks_for_uncalled_cards_are_rejected():
    board = make_board()
    assert not check_win(board, [0, 3, 12, 15], "corners", None, [1, 4, 13])
    # Even an extra, irrelevant mark on an uncalled card voids the claim
    assert not check_win(board, [0, 3, 12, 15, 5], "corners", None, [1, 4, 13, 16])


def test_horizontal_pivot_anchors_the_row():
    """Scenario C: pivot on index 6 (row 1) rules out a complete row 0."""
    board = make_board()
    row0 = [0, 1, 2, 3]
    assert not check_win(board, [6] + row0, "horizontal", 6, ALL_CALLED)
    assert check_win(board, [6, 4, 5, 7], "horizontal", 6, ALL_CALLED)
    assert check_win(board, row0, "horizontal", None, ALL_CALLED)


def test_vertical_pivot_anchors_the_column():
    board = make_board()
    col2 = [2, 6, 10, 14]
    assert check_win(board, col2, "vertical", 10, ALL_CALLED)
    assert not check_win(board, col2, "vertical", 1, ALL_CALLED)
    assert winning_line(board, col2, "vertical", None, ALL_CALLED) == (2, 6, 10, 14)


def test_diagonal_requires_pivot_on_the_line():
    board = make_board()
    main = [0, 5, 10, 15]
    anti = [3, 6, 9, 12]
    assert check_win(board, main, "diagonal", 5, ALL_CALLED)
    assert check_win(board, anti, "diagonal", None, ALL_CALLED)
    assert not check_win(board, anti, "diagonal", 0, ALL_CALLED)
    # Index 1 sits on neither diagonal
    assert candidate_lines("diagonal", 1) == []
    assert not check_win(board, main + anti, "diagonal", 1, ALL_CALLED)


def test_square_is_the_central_block():
    board = make_board()
    assert check_win(board, [5, 6, 9, 10], "square", None, ALL_CALLED)
    assert not check_win(board, [0, 1, 4, 5], "square", None, ALL_CALLED)


@pytest.mark.parametrize(
    "marks, mode, pivot",
    [
        ([0, 3, 12, 15], "bogus", None),
        ([0, 3, 12, 16], "corners", None),
        ([0, 3, 12, -1], "corners", None),
        (["0", 3, 12, 15], "corners", None),
        ([0, 1, 2, 3], "horizontal", 42),
        ([0, 3, 12, 15], None, None),
    ],
)
def test_malformed_input_is_a_loss_not_an_error(marks, mode, pivot):
    assert check_win(make_board(), marks, mode, pivot, ALL_CALLED) is False


def test_wrong_board_size_loses():
    assert not check_win(make_board()[:15], [0, 3, 12], "corners", None, ALL_CALLED)
    assert not check_win(None, [0], "full", None, ALL_CALLED)
