import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from reportbot.events import EndOutcome, parse_stage_file, scan

USER = 42
FOLDER = "/RMRPreport/30.12.24 – 05.01.25/Налёты, захваты"


def test_parse_stage_file():
    assert parse_stage_file("12-1.jpg") == (12, 1)
    assert parse_stage_file("3-2.PNG") == (3, 2)
    assert parse_stage_file("3-3.jpg") is None
    assert parse_stage_file("punishment_1_abc.jpg") is None
    assert parse_stage_file("4-1.bmp") is None
    assert parse_stage_file("4-1.jpg.tmp") is None


def test_scan_groups_starts_and_ends():
    result = scan(["1-1.jpg", "1-2.jpg", "2-1.jpeg", "7-2.gif", "notes.txt"])
    assert result.starts == {1, 2}
    assert result.ends == {1, 7}
    assert result.max_number == 7
    assert result.unfinished == [2]


@pytest.mark.asyncio
async def test_start_takes_next_number_after_max(events, disk):
    disk.add(FOLDER, "1-1.jpg", "1-2.jpg", "3-1.jpg")
    assert await events.assign_number_for_start(USER, "raids", FOLDER) == 4


@pytest.mark.asyncio
async def test_start_in_empty_folder_is_one(events, disk):
    disk.add(FOLDER, "punishment_1_abcdef.jpg")
    assert await events.assign_number_for_start(USER, "raids", FOLDER) == 1
    assert await events.assign_number_for_start(USER, "mp", "/missing/folder") == 1


@pytest.mark.asyncio
async def test_start_records_pending_entry(events, state, disk):
    disk.add(FOLDER, "1-1.jpg")
    number = await events.assign_number_for_start(USER, "raids", FOLDER)
    pending = state.get_pending(USER, "raids")
    assert pending.event_number == number == 2
    assert pending.folder_path == FOLDER


@pytest.mark.asyncio
async def test_start_skips_numbers_taken_between_listings(events, disk):
    disk.add(FOLDER, "1-1.jpg")
    original = disk.list_files

    async def racing_list_files(user_id, folder_path):
        names = await original(user_id, folder_path)
        if disk.list_calls == 1:
            # Another writer saves starts 2 and 3 after the first listing.
            disk.add(FOLDER, "2-1.jpg", "3-1.jpg")
        return names

    disk.list_files = racing_list_files
    assert await events.assign_number_for_start(USER, "raids", FOLDER) == 4


@pytest.mark.asyncio
async def test_start_falls_back_to_weekly_counter_when_disk_is_down(events, state, disk):
    disk.add(FOLDER, "1-1.jpg", "2-1.jpg")
    disk.unavailable = True
    first = await events.assign_number_for_start(USER, "raids", FOLDER)
    second = await events.assign_number_for_start(USER, "raids", FOLDER)
    assert (first, second) == (1, 2)
    assert state.get_pending(USER, "raids").event_number == 2


@pytest.mark.asyncio
async def test_end_continues_pending_event(events, state, disk):
    disk.add(FOLDER, "5-1.jpg")
    state.set_pending(USER, "raids", 5, FOLDER)
    assignment = await events.assign_number_for_end(USER, "raids", FOLDER)
    assert assignment.number == 5
    assert assignment.outcome is EndOutcome.CONTINUATION
    assert assignment.is_continuation
    assert state.get_pending(USER, "raids") is None


@pytest.mark.asyncio
async def test_end_for_already_closed_pending_gets_new_number(events, state, disk):
    disk.add(FOLDER, "5-1.jpg", "5-2.jpg", "6-1.jpg")
    state.set_pending(USER, "raids", 5, FOLDER)
    assignment = await events.assign_number_for_end(USER, "raids", FOLDER)
    assert assignment.number == 7
    assert assignment.outcome is EndOutcome.SUPERSEDED_COMPLETED
    assert not assignment.is_continuation
    assert state.get_pending(USER, "raids") is None


@pytest.mark.asyncio
async def test_end_trusts_pending_when_listing_fails(events, state, disk):
    state.set_pending(USER, "raids", 5, FOLDER)
    disk.unavailable = True
    assignment = await events.assign_number_for_end(USER, "raids", FOLDER)
    assert (assignment.number, assignment.outcome) == (5, EndOutcome.CONTINUATION)


@pytest.mark.asyncio
async def test_end_without_pending_closes_lowest_open_event(events, disk):
    disk.add(FOLDER, "2-1.jpg", "4-1.jpg", "1-1.jpg", "1-2.jpg")
    assignment = await events.assign_number_for_end(USER, "raids", FOLDER)
    assert assignment.number == 2
    assert assignment.outcome is EndOutcome.ORPHANED
    assert assignment.is_continuation


@pytest.mark.asyncio
async def test_end_with_only_paired_events_is_fresh(events, disk):
    disk.add(FOLDER, "1-1.jpg", "1-2.jpg", "2-1.jpg", "2-2.jpg")
    assignment = await events.assign_number_for_end(USER, "raids", FOLDER)
    assert assignment.number == 3
    assert assignment.outcome is EndOutcome.FRESH
    assert not assignment.is_continuation


@pytest.mark.asyncio
async def test_end_never_fails_when_disk_is_down(events, disk):
    disk.unavailable = True
    assignment = await events.assign_number_for_end(USER, "mp", FOLDER)
    assert assignment.number == 1
    assert assignment.outcome is EndOutcome.FRESH


@pytest.mark.asyncio
async def test_start_then_end_returns_same_number(events, disk):
    disk.add(FOLDER, "1-1.jpg", "1-2.jpg")
    number = await events.assign_number_for_start(USER, "supplies", FOLDER)
    await disk.upload_file(USER, "/tmp/x.jpg", f"{FOLDER}/{number}-1.jpg")
    assignment = await events.assign_number_for_end(USER, "supplies", FOLDER)
    assert assignment.number == number == 2
    assert assignment.is_continuation


@pytest.mark.asyncio
async def test_pending_is_separate_per_category(events, state, disk):
    state.set_pending(USER, "mp", 9, FOLDER)
    assignment = await events.assign_number_for_end(USER, "raids", FOLDER)
    assert assignment.outcome is EndOutcome.FRESH
    assert state.get_pending(USER, "mp").event_number == 9


@pytest.mark.asyncio
async def test_list_unfinished_and_summarize(events, disk):
    disk.add(FOLDER, "1-1.jpg", "1-2.jpg", "2-1.jpg", "4-1.jpg", "4-2.jpg")
    assert await events.list_unfinished(USER, FOLDER) == [2]
    summary = await events.summarize(USER, FOLDER)
    assert (summary.total, summary.completed, summary.incomplete) == (3, 2, 1)
    assert summary.unmatched_ends == 0


@pytest.mark.asyncio
async def test_summary_counts_end_without_start_in_total_only(events, disk):
    disk.add(FOLDER, "1-1.jpg", "1-2.jpg", "3-2.jpg")
    summary = await events.summarize(USER, FOLDER)
    assert (summary.total, summary.completed, summary.incomplete, summary.unmatched_ends) == (2, 1, 0, 1)


@pytest.mark.asyncio
async def test_stage_lock_serializes_double_taps(events, disk):
    disk.add(FOLDER, "1-1.jpg", "1-2.jpg")

    async def tap():
        async with events.stage_lock(USER, "raids"):
            number = await events.assign_number_for_start(USER, "raids", FOLDER)
            await disk.upload_file(USER, "/tmp/x.jpg", f"{FOLDER}/{number}-1.jpg")
            return number

    numbers = await asyncio.gather(tap(), tap())
    assert sorted(numbers) == [2, 3]


def test_stage_lock_is_per_user_and_category(events):
    assert events.stage_lock(1, "mp") is events.stage_lock(1, "mp")
    assert events.stage_lock(1, "mp") is not events.stage_lock(1, "raids")
    assert events.stage_lock(1, "mp") is not events.stage_lock(2, "mp")


def test_sweep_expired_pending_delegates_to_state(events, state):
    now = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)
    state.set_pending(1, "mp", 1, now=now - timedelta(hours=30))
    state.set_pending(1, "raids", 2, now=now)
    assert events.sweep_expired_pending(now, timedelta(hours=24)) == 1
    assert events.sweep_expired_pending(now, timedelta(hours=24)) == 0
    assert state.get_pending(1, "raids").event_number == 2
