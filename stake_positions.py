"""
Stake and Create Position Records

This module turns raw stake/create event records into uniform Position
entities and resolves them into validated, decimal-scaled values for the
projection engine. It also holds the error taxonomy and the validation report
that collects every skipped record or day so callers can surface them.
"""

import logging
import numbers
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional, Union

import pandas as pd

logger = logging.getLogger(__name__)

MS_PER_DAY = 86_400_000
BASE_UNIT_DECIMALS = 18
POSITION_TYPES = ('stake', 'create')


class ProjectionError(Exception):
    """Base class for projection engine errors"""


class MalformedPositionError(ProjectionError, ValueError):
    """A position record is missing a field or carries an unusable value"""


class InvalidInputError(ProjectionError, ValueError):
    """The whole input is unusable (no positions, no reward data, bad epoch)"""


class MissingRewardDataWarning(UserWarning):
    """No reward pool row exists for a day the simulation needs"""


class DegenerateBaselineWarning(UserWarning):
    """No day has a positive reward pool to extrapolate from"""


class MissingOriginationWarning(UserWarning):
    """A position has no usable origination instant; it settles but earns no reward"""


@dataclass(frozen=True)
class Position:
    """A stake or create record exactly as supplied upstream"""

    user: Optional[str]
    id: Optional[str]
    type: Optional[str]
    shares: Any  # base-unit integer string
    maturity_date: Any  # ISO-8601 string or epoch seconds
    timestamp: Any  # origination instant, ISO-8601 string or epoch seconds
    staking_days: Optional[int] = None
    principal: Any = None  # stakes only, base units
    torus_amount: Any = None  # creates only, base units
    block_number: int = 0

    @property
    def key(self) -> str:
        return f"{self.user}-{self.id}-{self.type}"

    @property
    def amount(self) -> Any:
        """Raw principal for stakes, raw minted amount for creates"""
        if self.type == 'create':
            return self.torus_amount
        return self.principal


@dataclass(frozen=True)
class ResolvedPosition:
    """A Position whose values have been parsed and scaled to display units"""

    position: Position
    shares: Decimal
    amount: Decimal
    origin_instant: Optional[pd.Timestamp]
    origin_day: Optional[int]  # None when the origination instant is unknown
    maturity_day: int

    @property
    def key(self) -> str:
        return self.position.key

    @property
    def type(self) -> str:
        return self.position.type

    def is_active_on(self, day: int) -> bool:
        # The maturity day itself still earns rewards
        return self.origin_day is not None and self.origin_day <= day <= self.maturity_day


@dataclass(frozen=True)
class SkippedRecord:
    """One omitted record or day, with the reason it was left out"""

    category: type
    reason: str
    key: Optional[str] = None
    day: Optional[int] = None

    @property
    def kind(self) -> str:
        return self.category.__name__


@dataclass
class ValidationReport:
    """Collects skipped records and days across one engine invocation"""

    skipped: List[SkippedRecord] = field(default_factory=list)
    log_skips: bool = True

    def record(self, category: type, reason: str, key: Optional[str] = None,
               day: Optional[int] = None) -> SkippedRecord:
        entry = SkippedRecord(category, reason, key, day)
        # Day-level entries are noted by every pass over the same series
        if key is None and entry in self.skipped:
            return entry
        self.skipped.append(entry)
        if self.log_skips:
            where = key if key is not None else f"day {day}"
            logger.warning("%s (%s): %s", entry.kind, where, reason)
        return entry

    def merge(self, entries: List[SkippedRecord]) -> None:
        for entry in entries:
            self.record(entry.category, entry.reason, key=entry.key, day=entry.day)

    def count(self, category: Optional[type] = None) -> int:
        if category is None:
            return len(self.skipped)
        return sum(1 for entry in self.skipped if entry.category is category)

    def by_category(self) -> Dict[str, List[SkippedRecord]]:
        grouped: Dict[str, List[SkippedRecord]] = {}
        for entry in self.skipped:
            grouped.setdefault(entry.kind, []).append(entry)
        return grouped

    @property
    def is_clean(self) -> bool:
        return not self.skipped

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame(
            [
                {'category': e.kind, 'key': e.key, 'day': e.day, 'reason': e.reason}
                for e in self.skipped
            ],
            columns=['category', 'key', 'day', 'reason'],
        )


def _pick(event: Dict[str, Any], *names: str, default: Any = None) -> Any:
    for name in names:
        if name in event and event[name] is not None:
            return event[name]
    return default


def _event_to_position(event: Dict[str, Any], default_type: str) -> Position:
    return Position(
        user=_pick(event, 'user'),
        id=_pick(event, 'id', 'stakeIndex'),
        type=_pick(event, 'type', default=default_type),
        shares=_pick(event, 'shares'),
        maturity_date=_pick(event, 'maturityDate', 'maturity_date'),
        timestamp=_pick(event, 'timestamp'),
        staking_days=_pick(event, 'stakingDays', 'staking_days'),
        principal=_pick(event, 'principal'),
        torus_amount=_pick(event, 'torusAmount', 'torus_amount', 'mintAmount'),
        block_number=_pick(event, 'blockNumber', 'block_number', default=0),
    )


def convert_to_positions(stake_events: List[Dict[str, Any]],
                         create_events: List[Dict[str, Any]]) -> List[Position]:
    """
    Merge raw stake and create event records into one list of Position

    No validation happens here; records are carried as-is and checked by
    resolve_position downstream.
    """
    positions = [_event_to_position(event, 'stake') for event in stake_events]
    positions.extend(_event_to_position(event, 'create') for event in create_events)
    return positions


def to_decimal(value: Any) -> Decimal:
    """Parse a string/int/float amount into a finite Decimal, raising ValueError otherwise"""
    if value is None or isinstance(value, bool):
        raise ValueError(f"not a number: {value!r}")
    if isinstance(value, Decimal):
        result = value
    else:
        text = str(value).strip()
        try:
            result = Decimal(text)
        except InvalidOperation:
            raise ValueError(f"not a number: {value!r}") from None
    if not result.is_finite():
        raise ValueError(f"not a finite number: {value!r}")
    return result


def from_base_units(value: Any, decimals: int = BASE_UNIT_DECIMALS) -> Decimal:
    """Rescale a base-unit fixed-point amount (e.g. wei) to display units"""
    return to_decimal(value).scaleb(-decimals)


def parse_instant(value: Any) -> pd.Timestamp:
    """
    Parse an instant given as ISO-8601 text, epoch seconds or a datetime

    Naive values are taken to be UTC. Raises ValueError when the value
    cannot be interpreted.
    """
    if value is None or isinstance(value, bool) or (isinstance(value, str) and not value.strip()):
        raise ValueError(f"missing instant: {value!r}")
    try:
        if isinstance(value, numbers.Number):
            ts = pd.to_datetime(float(value), unit='s', utc=True)
        elif isinstance(value, str) and _is_number(value):
            ts = pd.to_datetime(float(value), unit='s', utc=True)
        elif isinstance(value, (datetime, pd.Timestamp, str)):
            ts = pd.to_datetime(value, utc=True)
        else:
            raise ValueError(f"unsupported instant type: {type(value).__name__}")
    except (TypeError, OverflowError) as exc:
        raise ValueError(f"unparseable instant {value!r}: {exc}") from exc
    if ts is pd.NaT or pd.isna(ts):
        raise ValueError(f"unparseable instant: {value!r}")
    return ts


def _is_number(text: str) -> bool:
    try:
        float(text)
    except ValueError:
        return False
    return True


def protocol_day(instant: pd.Timestamp, epoch: pd.Timestamp) -> int:
    """1-based day index of an instant, counted in whole days since the epoch"""
    elapsed_ms = instant.value // 1_000_000 - epoch.value // 1_000_000
    return int(elapsed_ms // MS_PER_DAY) + 1


def day_date(day: int, epoch: pd.Timestamp) -> str:
    return (epoch + pd.Timedelta(days=day - 1)).strftime('%Y-%m-%d')


def resolve_position(position: Position, epoch: pd.Timestamp,
                     decimals: int = BASE_UNIT_DECIMALS) -> ResolvedPosition:
    """
    Validate one Position and scale its values for the projection math

    Args:
        position: Raw upstream position
        epoch: Protocol start instant
        decimals: Fixed-point decimals of base-unit amounts

    Returns:
        ResolvedPosition with decimal shares/amount and origin/maturity days;
        origin_instant and origin_day are None when the timestamp is unusable

    Raises:
        MalformedPositionError: if any required value is missing or unusable
    """
    for name in ('user', 'id', 'type', 'shares', 'maturity_date'):
        value = getattr(position, name)
        if value is None or (isinstance(value, str) and not value.strip()):
            raise MalformedPositionError(f"missing {name}")
    if position.type not in POSITION_TYPES:
        raise MalformedPositionError(f"unknown position type {position.type!r}")

    try:
        shares = from_base_units(position.shares, decimals)
    except ValueError as exc:
        raise MalformedPositionError(f"invalid shares: {exc}") from exc
    if shares <= 0:
        raise MalformedPositionError(f"non-positive shares {position.shares!r}")

    try:
        maturity = parse_instant(position.maturity_date)
    except ValueError as exc:
        raise MalformedPositionError(f"invalid maturity date: {exc}") from exc
    try:
        origin = parse_instant(position.timestamp)
    except ValueError:
        origin = None
    if origin is not None and maturity < origin:
        raise MalformedPositionError("maturity precedes origination")

    raw_amount = position.amount
    try:
        amount = Decimal(0) if raw_amount is None else from_base_units(raw_amount, decimals)
    except ValueError as exc:
        raise MalformedPositionError(f"invalid {position.type} amount: {exc}") from exc
    if amount < 0:
        raise MalformedPositionError(f"negative {position.type} amount")

    return ResolvedPosition(
        position=position,
        shares=shares,
        amount=amount,
        origin_instant=origin,
        origin_day=protocol_day(origin, epoch) if origin is not None else None,
        maturity_day=protocol_day(maturity, epoch),
    )


def resolve_or_skip(position: Position, epoch: pd.Timestamp,
                    decimals: int = BASE_UNIT_DECIMALS) -> Union[ResolvedPosition, SkippedRecord]:
    """Per-record result: the resolved position, or the reason it was skipped"""
    try:
        return resolve_position(position, epoch, decimals)
    except MalformedPositionError as exc:
        return SkippedRecord(MalformedPositionError, str(exc), key=record_key(position))


def record_key(position: Any) -> str:
    return position.key if isinstance(position, Position) else repr(position)


def resolve_positions(positions: List[Position], epoch: pd.Timestamp,
                      report: Optional[ValidationReport] = None,
                      decimals: int = BASE_UNIT_DECIMALS) -> List[ResolvedPosition]:
    """
    Resolve every position, recording skips in the report

    The result is ordered by origination instant, then block number, so
    duplicate keys keep their earliest record and output order is stable.
    """
    if report is None:
        report = ValidationReport()

    resolved = []
    for position in positions:
        if not isinstance(position, Position):
            report.record(MalformedPositionError, "not a Position record", key=record_key(position))
            continue
        outcome = resolve_or_skip(position, epoch, decimals)
        if isinstance(outcome, SkippedRecord):
            report.record(outcome.category, outcome.reason, key=outcome.key)
            continue
        if outcome.origin_day is None:
            report.record(MissingOriginationWarning,
                          "unusable origination timestamp, position earns no reward", key=outcome.key)
        resolved.append(outcome)

    resolved.sort(key=_origination_order)

    unique: List[ResolvedPosition] = []
    seen = set()
    for item in resolved:
        if item.key in seen:
            report.record(MalformedPositionError, "duplicate position key", key=item.key)
            continue
        seen.add(item.key)
        unique.append(item)
    return unique


def _origination_order(item: ResolvedPosition):
    # Unknown origination sorts last
    instant = item.origin_instant
    return (instant is None, instant.value if instant is not None else 0,
            _ordinal(item.position.block_number), item.key)


def _ordinal(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0
