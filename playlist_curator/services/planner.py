"""
Order planning against a move-one-entry-at-a-time API.

Jellyfin can only move a single playlist entry to an absolute index, so a
new order is realised by walking the target front to back: position 0 is
fixed first, then position 1, and so on. Every move shifts the entries
after it, which is why the index map is rebuilt before each step. Entries
that already sit in their target slot cost no call at all, so an already
ordered prefix is free.

This greedy plan always converges and never issues more moves than the
length of the target minus its already-correct prefix. It is not the
move-count minimum for every permutation (a single entry moved from the
front to the back costs n - 1 moves here); simplicity wins over optimality.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Dict, Iterator, List, Optional, Sequence, Tuple, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class Move:
    entry_id: str
    from_index: int
    to_index: int


def index_map(entry_ids: Sequence[Optional[str]]) -> Dict[str, int]:
    return {entry_id: index for index, entry_id in enumerate(entry_ids) if entry_id is not None}


def splice(sequence: List[T], from_index: int, to_index: int) -> None:
    """Move one element in place, the way the server applies a Move call."""
    item = sequence.pop(from_index)
    sequence.insert(to_index, item)


def iter_plan(
    current: Callable[[], Sequence[Optional[str]]],
    target_ids: Sequence[str],
) -> Iterator[Tuple[int, Optional[Move]]]:
    """Walk the target, yielding ``(step, move)`` for every target entry.

    ``current`` is called before every step so the caller can apply each
    move (to a simulation or to the live list) before the next index map is
    built. ``move`` is ``None`` when the entry already sits in its slot or
    is missing from the current list; a missing entry is skipped rather
    than failing the whole plan.
    """
    position = 0
    for step, target_id in enumerate(target_ids):
        current_index = index_map(current()).get(target_id)
        if current_index is None:
            logger.warning("Entry %s is not in the playlist; skipping it", target_id)
            yield step, None
            continue
        if current_index == position:
            yield step, None
        else:
            yield step, Move(entry_id=target_id, from_index=current_index, to_index=position)
        position += 1


def plan_moves(current_ids: Sequence[Optional[str]], target_ids: Sequence[str]) -> List[Move]:
    simulated = list(current_ids)
    moves: List[Move] = []
    for _, move in iter_plan(lambda: simulated, target_ids):
        if move is not None:
            splice(simulated, move.from_index, move.to_index)
            moves.append(move)
    return moves


def apply_moves(sequence: Sequence[T], moves: Sequence[Move]) -> List[T]:
    result = list(sequence)
    for move in moves:
        splice(result, move.from_index, move.to_index)
    return result
