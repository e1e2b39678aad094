from __future__ import annotations

from typing import Any, Iterable, List, Optional, Sequence, Tuple

GRID = 4
CELLS = GRID * GRID

Line = Tuple[int, ...]

ROWS: List[Line] = [tuple(range(row * GRID, row * GRID + GRID)) for row in range(GRID)]
COLUMNS: List[Line] = [tuple(range(col, CELLS, GRID)) for col in range(GRID)]
DIAGONALS: List[Line] = [(0, 5, 10, 15), (3, 6, 9, 12)]
CORNERS: Line = (0, 3, 12, 15)
SQUARE: Line = (5, 6, 9, 10)
FULL: Line = tuple(range(CELLS))

MODES = ("full", "horizontal", "vertical", "diagonal", "corners", "square")


def _as_index(value: Any) -> Optional[int]:
    if isinstance(value, bool) or not isinstance(value, int):
        return None
    if 0 <= value < CELLS:
        return value
    return None


def candidate_lines(mode: str, pivot: Optional[int] = None) -> List[Line]:
    """Lines that may complete a win for ``mode``.

    Row, column and diagonal modes are anchored by the pivot (the first cell
    the player marked): only the line through the pivot is eligible.
    """
    if mode == "full":
        return [FULL]
    if mode == "horizontal":
        return ROWS if pivot is None else [ROWS[pivot // GRID]]
    if mode == "vertical":
        return COLUMNS if pivot is None else [COLUMNS[pivot % GRID]]
    if mode == "diagonal":
        if pivot is None:
            return list(DIAGONALS)
        return [line for line in DIAGONALS if pivot in line]
    if mode == "corners":
        return [CORNERS]
    if mode == "square":
        return [SQUARE]
    return []


def _card_id(cell: Any) -> Any:
    if isinstance(cell, dict):
        return cell.get("id")
    return getattr(cell, "id", cell)


def winning_line(
    board: Sequence[Any],
    marked_indices: Iterable[Any],
    mode: Optional[str],
    pivot: Any,
    called_card_ids: Iterable[int],
) -> Optional[Line]:
    if mode not in MODES:
        return None
    try:
        cells = list(board)
        raw_marks = list(marked_indices)
    except TypeError:
        return None
    if len(cells) != CELLS:
        return None

    marks = set()
    for value in raw_marks:
        idx = _as_index(value)
        if idx is None:
            return None
        marks.add(idx)

    anchor: Optional[int] = None
    if pivot is not None:
        anchor = _as_index(pivot)
        if anchor is None:
            return None

    # A mark is only valid for a card that has actually been called
    called = set(called_card_ids)
    if any(_card_id(cells[idx]) not in called for idx in marks):
        return None

    for line in candidate_lines(mode, anchor):
        if all(idx in marks for idx in line):
            return line
    return None


def check_win(
    board: Sequence[Any],
    marked_indices: Iterable[Any],
    mode: Optional[str],
    pivot: Any,
    called_card_ids: Iterable[int],
) -> bool:
    return winning_line(board, marked_indices, mode, pivot, called_card_ids) is not None
