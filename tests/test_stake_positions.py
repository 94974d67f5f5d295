from decimal import Decimal

import numpy as np
import pytest

from conftest import EPOCH, WEI, make_position
from stake_positions import (
    MalformedPositionError,
    MissingOriginationWarning,
    MissingRewardDataWarning,
    Position,
    ResolvedPosition,
    SkippedRecord,
    ValidationReport,
    convert_to_positions,
    from_base_units,
    parse_instant,
    protocol_day,
    resolve_or_skip,
    resolve_positions,
    resolve_position,
)


@pytest.fixture
def epoch_ts():
    return parse_instant(EPOCH)


def test_convert_to_positions_merges_stakes_and_creates():
    stakes = [{
        'user': '0xabc', 'id': '7', 'shares': '100', 'principal': '5',
        'maturityDate': '2025-08-01T00:00:00Z', 'stakingDays': 21,
        'timestamp': '1752192000', 'blockNumber': 10,
    }]
    creates = [{
        'user': '0xdef', 'id': '8', 'shares': '200', 'torusAmount': '9',
        'maturityDate': '2025-08-02T00:00:00Z', 'stakingDays': 22,
        'timestamp': '1752192000', 'blockNumber': 11,
    }]

    positions = convert_to_positions(stakes, creates)

    assert [p.type for p in positions] == ['stake', 'create']
    assert positions[0].amount == '5'
    assert positions[1].amount == '9'
    assert positions[1].key == '0xdef-8-create'
    assert positions[0].staking_days == 21


def test_convert_to_positions_keeps_invalid_records_untouched():
    positions = convert_to_positions([{'user': '0xabc', 'shares': '0'}], [])

    assert positions[0].shares == '0'
    assert positions[0].id is None


def test_parse_instant_accepts_iso_and_epoch_seconds(epoch_ts):
    assert parse_instant('1752192000') == epoch_ts
    assert parse_instant(1752192000) == epoch_ts
    assert parse_instant('2025-07-11T00:00:00Z') == epoch_ts


@pytest.mark.parametrize('value', ['not a date', '', None])
def test_parse_instant_rejects_garbage(value):
    with pytest.raises(ValueError):
        parse_instant(value)


def test_protocol_day_uses_whole_elapsed_days(epoch_ts):
    assert protocol_day(parse_instant('2025-07-11T00:00:00Z'), epoch_ts) == 1
    assert protocol_day(parse_instant('2025-07-11T23:59:59Z'), epoch_ts) == 1
    assert protocol_day(parse_instant('2025-07-12T00:00:00Z'), epoch_ts) == 2
    assert protocol_day(parse_instant('2025-07-10T12:00:00Z'), epoch_ts) == 0


def test_from_base_units_is_exact():
    assert from_base_units('1234567890123456789012345') == Decimal('1234567.890123456789012345')
    assert from_base_units(str(5000 * WEI)) == 5000


def test_resolve_position_scales_and_computes_days(epoch_ts):
    resolved = resolve_position(
        make_position(shares=5000, origin_day=1, maturity_day=3, amount=10000), epoch_ts
    )

    assert isinstance(resolved, ResolvedPosition)
    assert resolved.shares == 5000
    assert resolved.amount == 10000
    assert resolved.origin_day == 1
    assert resolved.maturity_day == 3
    assert resolved.is_active_on(3)
    assert not resolved.is_active_on(4)


def test_missing_amount_counts_as_zero(epoch_ts):
    resolved = resolve_position(make_position(principal=None), epoch_ts)

    assert resolved.amount == 0


@pytest.mark.parametrize('overrides', [
    {'user': None},
    {'id': ''},
    {'type': None},
    {'type': 'lp'},
    {'shares': '0'},
    {'shares': '-5'},
    {'shares': 'abc'},
    {'maturity_date': None},
    {'maturity_date': 'soon'},
    {'principal': '-1'},
    {'maturity_date': '2025-07-01T00:00:00Z'},
])
def test_malformed_positions_raise(epoch_ts, overrides):
    with pytest.raises(MalformedPositionError):
        resolve_position(make_position(**overrides), epoch_ts)


def test_resolve_or_skip_returns_skip_reason(epoch_ts):
    outcome = resolve_or_skip(make_position(shares=0), epoch_ts)

    assert isinstance(outcome, SkippedRecord)
    assert outcome.category is MalformedPositionError
    assert outcome.key == '0xaaa-1-stake'
    assert 'shares' in outcome.reason


def test_resolve_positions_skips_bad_records_and_keeps_the_rest(epoch_ts):
    report = ValidationReport()
    positions = [
        make_position(id='1'),
        make_position(id='2', shares=0),
        make_position(id='3', maturity_date='garbage'),
        make_position(id='4'),
    ]

    resolved = resolve_positions(positions, epoch_ts, report)

    assert [p.position.id for p in resolved] == ['1', '4']
    assert report.count(MalformedPositionError) == 2
    assert not report.is_clean


def test_duplicate_keys_keep_earliest_record(epoch_ts):
    report = ValidationReport()
    later = make_position(id='1', origin_day=2, block_number=9, shares=77)
    earlier = make_position(id='1', origin_day=1, block_number=3, shares=11)

    resolved = resolve_positions([later, earlier], epoch_ts, report)

    assert len(resolved) == 1
    assert resolved[0].shares == 11
    assert report.skipped[0].reason == 'duplicate position key'


def test_resolve_positions_orders_by_origination_then_block(epoch_ts):
    positions = [
        make_position(id='c', origin_day=2, block_number=1),
        make_position(id='b', origin_day=1, block_number=5),
        make_position(id='a', origin_day=1, block_number=4),
    ]

    resolved = resolve_positions(positions, epoch_ts)

    assert [p.position.id for p in resolved] == ['a', 'b', 'c']


def test_non_position_records_are_reported(epoch_ts):
    report = ValidationReport()

    assert resolve_positions([{'user': 'x'}], epoch_ts, report) == []
    assert report.count(MalformedPositionError) == 1


def test_report_ignores_exact_duplicates_and_groups_by_category():
    report = ValidationReport()
    report.record(MissingRewardDataWarning, 'no row', day=4)
    report.record(MissingRewardDataWarning, 'no row', day=4)
    report.record(MalformedPositionError, 'missing user', key='None-1-stake')

    assert report.count() == 2
    assert set(report.by_category()) == {'MissingRewardDataWarning', 'MalformedPositionError'}
    frame = report.to_frame()
    assert list(frame.columns) == ['category', 'key', 'day', 'reason']
    assert len(frame) == 2


def test_position_is_immutable():
    position = make_position()

    with pytest.raises(Exception):
        position.shares = '1'
    assert isinstance(position, Position)


def test_parse_instant_accepts_numpy_integers(epoch_ts):
    assert parse_instant(np.int64(1752192000)) == epoch_ts
    assert parse_instant(np.float64(1752192000.0)) == epoch_ts


def test_unusable_origination_keeps_position_without_accrual(epoch_ts):
    report = ValidationReport()
    undated = make_position(id='9', timestamp='yesterday', amount=50)

    resolved = resolve_positions([make_position(id='1'), undated], epoch_ts, report)

    assert [p.position.id for p in resolved] == ['1', '9']
    assert resolved[1].origin_day is None
    assert resolved[1].amount == 50
    assert not any(resolved[1].is_active_on(day) for day in range(0, 5))
    assert report.count(MissingOriginationWarning) == 1
    assert report.count(MalformedPositionError) == 0


def test_report_counts_distinct_records_sharing_a_key(epoch_ts):
    report = ValidationReport()
    first = make_position(user='0xabc', id=None)
    second = make_position(user='0xabc', id=None, shares=5)

    resolve_positions([first, second], epoch_ts, report)

    assert report.count(MalformedPositionError) == 2
    assert [entry.key for entry in report.skipped] == ['0xabc-None-stake'] * 2


def test_merge_keeps_record_entries_and_dedupes_days():
    report = ValidationReport()
    report.record(MissingRewardDataWarning, 'no row', day=4)
    other = ValidationReport(log_skips=False)
    other.record(MissingRewardDataWarning, 'no row', day=4)
    other.record(MalformedPositionError, 'missing id', key='0xabc-None-stake')

    report.merge(other.skipped)

    assert report.count() == 2
    assert report.count(MalformedPositionError) == 1
