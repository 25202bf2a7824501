from __future__ import annotations

import math

import pytest

from chunkpress.errors import InvalidInputError
from chunkpress.planner import calculate_chunk_size, plan_chunks


def test_plan_partitions_every_page_exactly_once() -> None:
    for total in (1, 2, 9, 10, 11, 25, 99, 100, 101):
        for size in (1, 3, 5, 10, 50):
            plan = plan_chunks(total, total * 1024, requested_chunk_size=size)
            covered = [p for r in plan for p in range(r.start, r.end)]
            assert covered == list(range(total))
            assert len(plan) == math.ceil(total / size)
            assert all(0 < r.length <= size for r in plan)


def test_twenty_five_pages_split_ten_ten_five() -> None:
    plan = plan_chunks(25, 2 * 1024 * 1024)
    assert plan.chunk_size == 10
    assert [(r.start, r.end) for r in plan] == [(0, 10), (10, 20), (20, 25)]
    assert not plan.is_single_chunk


def test_small_document_is_single_chunk() -> None:
    plan = plan_chunks(3, 30_000)
    assert plan.is_single_chunk
    assert plan.ranges[0].length == 3


def test_scanned_document_uses_smaller_chunks() -> None:
    assert calculate_chunk_size(10, 60 * 1024 * 1024) == 5


def test_constrained_device_uses_smaller_chunks() -> None:
    assert calculate_chunk_size(40, 400_000, is_constrained_device=True) == 5
    assert plan_chunks(40, 400_000, is_constrained_device=True).chunk_size == 5


def test_long_document_uses_smaller_chunks() -> None:
    assert calculate_chunk_size(501, 501 * 10_000) == 5
    assert calculate_chunk_size(500, 500 * 10_000) == 10


def test_requested_chunk_size_wins() -> None:
    plan = plan_chunks(40, 400_000, requested_chunk_size=7, is_constrained_device=True)
    assert plan.chunk_size == 7
    assert len(plan) == 6


@pytest.mark.parametrize("pages, size", [(0, None), (-3, None), (10, 0), (10, -1)])
def test_invalid_plan_arguments(pages, size) -> None:
    with pytest.raises(InvalidInputError):
        plan_chunks(pages, 1000, requested_chunk_size=size)


@pytest.mark.parametrize("pages", [0, -1])
def test_chunk_size_rejects_empty_document(pages) -> None:
    with pytest.raises(InvalidInputError):
        calculate_chunk_size(pages, 1000)
