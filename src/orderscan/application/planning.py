from __future__ import annotations
from typing import Iterator
from ..domain.errors import InvalidRange
from ..domain.models import BlockRange

def partition(from_block: int, to_block: int, chunk_size: int) -> Iterator[BlockRange]:
    """Inclusive [from_block, to_block] as ordered, disjoint chunks of at most chunk_size blocks."""
    if chunk_size <= 0:
        raise InvalidRange(f"chunk_size must be >= 1, got {chunk_size}")
    return _chunks(from_block, to_block, chunk_size)

def _chunks(from_block: int, to_block: int, chunk_size: int) -> Iterator[BlockRange]:
    b = from_block
    while b <= to_block:
        fb, tb = b, min(to_block, b + chunk_size - 1)
        yield BlockRange(fb, tb)
        b = tb + 1

def chunk_count(from_block: int, to_block: int, chunk_size: int) -> int:
    if chunk_size <= 0:
        raise InvalidRange(f"chunk_size must be >= 1, got {chunk_size}")
    return 0 if from_block > to_block else -(-(to_block - from_block + 1) // chunk_size)

def merge_intervals(intervals: list[tuple[int,int]]) -> list[tuple[int,int]]:
    if not intervals: return []
    intervals = sorted(intervals)
    merged: list[list[int]] = [[intervals[0][0], intervals[0][1]]]
    for s, e in intervals[1:]:
        ms, me = merged[-1]
        if s <= me + 1: merged[-1][1] = max(me, e)
        else: merged.append([s, e])
    return [(s, e) for s, e in merged]

def subtract_interval(iv: tuple[int,int], covered: list[tuple[int,int]]) -> list[tuple[int,int]]:
    s, e = iv
    if s > e: return []
    if not covered: return [iv]
    res: list[tuple[int,int]] = []
    cur = s
    for cs, ce in covered:
        if ce < cur: continue
        if cs > e: break
        if cs > cur: res.append((cur, min(e, cs - 1)))
        cur = max(cur, ce + 1)
        if cur > e: break
    if cur <= e: res.append((cur, e))
    return res
