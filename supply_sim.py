"""
Max Supply Projection Simulation Module

This module contains the projection engine for the share-weighted staking
protocol. It extrapolates the daily reward pool, computes each position's
share of every day's pool until maturity, and simulates day by day how much
supply settles when positions mature. A dilution simulator compares two
position sets against the same reward series.

All functions are pure: the epoch and current protocol day are always passed
in, and inputs are never mutated.
"""

import logging
from dataclasses import dataclass, field, replace
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

import numpy as np
import pandas as pd

from stake_positions import (
    BASE_UNIT_DECIMALS,
    DegenerateBaselineWarning,
    InvalidInputError,
    MissingRewardDataWarning,
    Position,
    ResolvedPosition,
    ValidationReport,
    day_date,
    parse_instant,
    record_key,
    resolve_positions,
    to_decimal,
)

logger = logging.getLogger(__name__)

ZERO = Decimal(0)


@dataclass
class ProjectionConfig:
    """Configuration parameters for max supply projection"""

    contract_start_date: str = '2025-07-11T00:00:00Z'  # Protocol day 1 starts here

    # Reward pool extrapolation
    daily_reduction_rate: float = 0.0008  # 0.08% less reward each day
    horizon_day: int = 96  # Extrapolate at least to this protocol day
    max_staking_days: int = 88  # Longest possible staking term

    base_unit_decimals: int = BASE_UNIT_DECIMALS

    def __post_init__(self):
        """Validate parameter ranges"""
        if not 0 <= self.daily_reduction_rate < 1:
            raise ValueError(
                f"daily_reduction_rate must be in [0, 1), got {self.daily_reduction_rate}"
            )
        if self.horizon_day < 1:
            raise ValueError(f"horizon_day must be at least 1, got {self.horizon_day}")
        if self.max_staking_days < 1:
            raise ValueError(f"max_staking_days must be at least 1, got {self.max_staking_days}")
        if self.base_unit_decimals < 0:
            raise ValueError(f"base_unit_decimals must be non-negative, got {self.base_unit_decimals}")
        parse_instant(self.contract_start_date)

    @property
    def epoch(self) -> pd.Timestamp:
        return parse_instant(self.contract_start_date)

    def extrapolation_horizon(self, current_protocol_day: Optional[int] = None) -> int:
        """Last day to extrapolate: the fixed horizon, or one full staking term past today"""
        if current_protocol_day is None:
            return self.horizon_day
        return max(self.horizon_day, current_protocol_day + self.max_staking_days)

    def get_config_summary(self) -> Dict[str, Any]:
        return {
            'contract_start_date': self.contract_start_date,
            'daily_reduction_rate': self.daily_reduction_rate,
            'horizon_day': self.horizon_day,
            'max_staking_days': self.max_staking_days,
            'base_unit_decimals': self.base_unit_decimals,
        }


@dataclass(frozen=True)
class RewardPoolDay:
    """Reward pool statistics for one protocol day, in display units"""

    day: int
    reward_pool: Decimal
    total_shares: Decimal
    penalties_in_pool: Decimal = ZERO
    is_extrapolated: bool = False

    @classmethod
    def from_record(cls, record: Any) -> 'RewardPoolDay':
        if isinstance(record, cls):
            return record
        day = record.get('day')
        if day is None or isinstance(day, bool) or int(day) != day:
            raise ValueError(f"invalid day index {day!r}")
        return cls(
            day=int(day),
            reward_pool=to_decimal(record.get('rewardPool', record.get('reward_pool'))),
            total_shares=to_decimal(record.get('totalShares', record.get('total_shares', 0))),
            penalties_in_pool=to_decimal(record.get('penaltiesInPool', record.get('penalties_in_pool', 0))),
            is_extrapolated=bool(record.get('calculated', record.get('is_extrapolated', False))),
        )


@dataclass(frozen=True)
class DailyProjection:
    day: int
    date: str
    share_percentage: Decimal
    daily_reward: Decimal
    cumulative_reward: Decimal
    is_active: bool


@dataclass
class PositionProjection:
    """One position's day-by-day share of the reward pool up to maturity"""

    position: Position
    daily_projections: List[DailyProjection]
    total_projected_reward: Decimal
    maturity_day: int
    origin_day: Optional[int]
    settlement_amount: Decimal  # principal for stakes, minted amount for creates

    @property
    def reward_at_maturity(self) -> Decimal:
        """Cumulative reward through the maturity day (or the last projected day)"""
        return self.total_projected_reward

    def is_active_on(self, day: int) -> bool:
        return self.origin_day is not None and self.origin_day <= day <= self.maturity_day

    def projection_for(self, day: int) -> Optional[DailyProjection]:
        for entry in self.daily_projections:
            if entry.day == day:
                return entry
        return None


@dataclass(frozen=True)
class SupplyBreakdown:
    from_stakes: Decimal
    from_creates: Decimal
    from_existing: Decimal


@dataclass(frozen=True)
class MaxSupplyProjection:
    """Projected maximum supply for one protocol day"""

    day: int
    date: str
    total_max_supply: Decimal
    active_positions: int
    daily_reward_pool: Decimal
    total_shares: Decimal
    breakdown: SupplyBreakdown
    released_from_stakes: Decimal = ZERO  # settled on this day only
    released_from_creates: Decimal = ZERO


@dataclass(frozen=True)
class DilutionImpact:
    day: int
    date: str
    supply_before: Decimal
    supply_after: Decimal
    dilution_amount: Decimal
    dilution_percentage: Decimal


@dataclass
class DilutionResult:
    before_dilution: List[MaxSupplyProjection]
    after_dilution: List[MaxSupplyProjection]
    dilution_impact: List[DilutionImpact]


@dataclass
class RewardPoolAudit:
    is_valid: bool
    errors: List[str] = field(default_factory=list)


def coerce_reward_pool_data(records: Iterable[Any],
                            report: Optional[ValidationReport] = None) -> List[RewardPoolDay]:
    """
    Parse raw reward pool records into RewardPoolDay rows sorted by day

    Unparseable rows and repeated day indices are dropped and recorded as
    missing reward data; the first row seen for a day wins.
    """
    if report is None:
        report = ValidationReport()
    rows: Dict[int, RewardPoolDay] = {}
    for record in records:
        try:
            row = RewardPoolDay.from_record(record)
        except (ValueError, TypeError, AttributeError) as exc:
            day = record.get('day') if isinstance(record, dict) else None
            report.record(MissingRewardDataWarning, f"unparseable reward pool row: {exc}",
                          day=day if isinstance(day, int) else None)
            continue
        if row.day in rows:
            report.record(MissingRewardDataWarning, "duplicate reward pool row ignored", day=row.day)
            continue
        rows[row.day] = row
    return [rows[day] for day in sorted(rows)]


def extend_reward_pool_data(rows: List[RewardPoolDay],
                            horizon_day: int,
                            daily_reduction_rate: float,
                            report: Optional[ValidationReport] = None) -> List[RewardPoolDay]:
    """
    Extrapolate the reward pool past the last known positive day

    The last positive reward value is carried forward and reduced by
    daily_reduction_rate for every day up to horizon_day. Existing rows in
    that range get their reward replaced; missing days are synthesized with
    zero shares and penalties. The input list is left untouched.

    Args:
        rows: Known reward pool rows
        horizon_day: Last day to cover
        daily_reduction_rate: Fractional reduction per day (e.g. 0.0008)
        report: Sink for the degenerate-baseline case

    Returns:
        New list of rows sorted by day
    """
    if report is None:
        report = ValidationReport()

    rows = [RewardPoolDay.from_record(row) for row in rows]
    positive_days = [row for row in rows if row.reward_pool > 0]
    if not positive_days:
        report.record(DegenerateBaselineWarning,
                      "no day with a positive reward pool, extrapolation skipped")
        return sorted(rows, key=lambda row: row.day)

    last = max(positive_days, key=lambda row: row.day)
    keep = Decimal(1) - to_decimal(daily_reduction_rate)
    by_day = {row.day: row for row in rows}

    current_pool = last.reward_pool
    for day in range(last.day + 1, horizon_day + 1):
        current_pool = current_pool * keep
        existing = by_day.get(day)
        if existing is not None:
            by_day[day] = replace(existing, reward_pool=current_pool, is_extrapolated=True)
        else:
            by_day[day] = RewardPoolDay(day=day, reward_pool=current_pool, total_shares=ZERO,
                                        penalties_in_pool=ZERO, is_extrapolated=True)

    logger.info("Extended reward pool from day %d (%.2f) to day %d (%.2f)",
                last.day, last.reward_pool, horizon_day, current_pool)
    return [by_day[day] for day in sorted(by_day)]


def validate_reward_pool_data(rows: List[RewardPoolDay],
                              config: Optional[ProjectionConfig] = None,
                              tolerance: float = 0.1) -> RewardPoolAudit:
    """
    Audit a reward pool series for gaps, negative values and decay progression

    Consecutive days whose reward differs from the expected decay of the
    previous day by more than tolerance (absolute, display units) are
    reported, as are day indices missing inside the known range.
    """
    config = config or ProjectionConfig()
    errors = []
    if not rows:
        return RewardPoolAudit(is_valid=False, errors=['no reward pool data'])

    ordered = sorted(rows, key=lambda row: row.day)
    known_days = {row.day for row in ordered}
    for day in range(ordered[0].day, ordered[-1].day + 1):
        if day not in known_days:
            errors.append(f"Missing data for day {day}")

    for row in ordered:
        if row.reward_pool < 0:
            errors.append(f"Day {row.day} has negative reward pool {row.reward_pool}")
        if row.total_shares < 0:
            errors.append(f"Day {row.day} has negative total shares {row.total_shares}")

    keep = Decimal(1) - to_decimal(config.daily_reduction_rate)
    tol = to_decimal(tolerance)
    for current, following in zip(ordered, ordered[1:]):
        if following.day != current.day + 1 or current.reward_pool <= 0 or following.reward_pool <= 0:
            continue
        expected = current.reward_pool * keep
        if abs(following.reward_pool - expected) > tol:
            errors.append(
                f"Day {following.day} progression error: expected ~{expected:.2f}, "
                f"got {following.reward_pool}"
            )

    return RewardPoolAudit(is_valid=not errors, errors=errors)


def _index_rows(rows: Iterable[RewardPoolDay]) -> Dict[int, RewardPoolDay]:
    return {row.day: row for row in rows}


def _effective_total_shares(day: int,
                            row: RewardPoolDay,
                            resolved: List[ResolvedPosition],
                            candidates: List[ResolvedPosition]) -> Decimal:
    # Reported totals when the protocol published them, otherwise recomputed
    # from live positions; hypothetical candidates always come on top.
    if row.total_shares > 0:
        total = row.total_shares
    else:
        total = sum((p.shares for p in resolved if p.is_active_on(day)), ZERO)
    total += sum((p.shares for p in candidates if p.is_active_on(day)), ZERO)
    return total


def _prepare(positions: List[Position], reward_pool_data: List[Any], contract_start_date: Any,
             report: ValidationReport, candidate_positions: Iterable[Position] = (),
             decimals: int = BASE_UNIT_DECIMALS):
    candidate_positions = list(candidate_positions)
    if not positions and not candidate_positions:
        raise InvalidInputError("no positions provided")
    if not reward_pool_data:
        raise InvalidInputError("no reward pool data provided")
    try:
        epoch = parse_instant(contract_start_date)
    except ValueError as exc:
        raise InvalidInputError(f"invalid contract start date: {exc}") from exc

    rows = coerce_reward_pool_data(reward_pool_data, report)
    if not rows:
        raise InvalidInputError("no usable reward pool rows")

    candidates = resolve_positions(candidate_positions, epoch, report, decimals)
    candidate_keys = {p.key for p in candidates}
    resolved = [
        p for p in resolve_positions(list(positions), epoch, report, decimals)
        if p.key not in candidate_keys
    ]
    return epoch, rows, resolved, candidates


def _project_position(resolved: ResolvedPosition, table: Dict[int, RewardPoolDay],
                      min_day: int, max_day: int, epoch: pd.Timestamp,
                      total_shares: Dict[int, Decimal]) -> PositionProjection:
    daily_projections = []
    cumulative = ZERO
    for day in range(min_day, min(resolved.maturity_day, max_day) + 1):
        row = table.get(day)
        if row is None:
            continue
        is_active = resolved.is_active_on(day)
        share_percentage = ZERO
        daily_reward = ZERO
        day_total = total_shares[day]
        if is_active and day_total > 0:
            share_percentage = resolved.shares / day_total
            daily_reward = row.reward_pool * share_percentage
            # A position can never take more than the whole pool
            daily_reward = min(max(daily_reward, ZERO), max(row.reward_pool, ZERO))
            cumulative = max(cumulative + daily_reward, ZERO)
        daily_projections.append(DailyProjection(
            day=day,
            date=day_date(day, epoch),
            share_percentage=share_percentage,
            daily_reward=daily_reward,
            cumulative_reward=cumulative,
            is_active=is_active,
        ))
    return PositionProjection(
        position=resolved.position,
        daily_projections=daily_projections,
        total_projected_reward=cumulative,
        maturity_day=resolved.maturity_day,
        origin_day=resolved.origin_day,
        settlement_amount=resolved.amount,
    )


def _record_missing_days(table: Dict[int, RewardPoolDay], first_day: int, last_day: int,
                         report: ValidationReport) -> None:
    for day in range(first_day, last_day + 1):
        if day not in table:
            report.record(MissingRewardDataWarning, "no reward pool row, day skipped", day=day)


def _share_projections(epoch, rows, resolved, candidates, report):
    table = _index_rows(rows)
    min_day, max_day = min(table), max(table)
    _record_missing_days(table, min_day, max_day, report)
    total_shares = {
        day: _effective_total_shares(day, row, resolved, candidates)
        for day, row in table.items()
    }
    projections: Dict[str, PositionProjection] = {}
    for item in list(resolved) + list(candidates):
        projections[item.key] = _project_position(item, table, min_day, max_day, epoch, total_shares)
    return table, total_shares, projections


def calculate_share_pool_percentages(positions: List[Position],
                                     reward_pool_data: List[Any],
                                     contract_start_date: Any,
                                     *,
                                     candidate_positions: Iterable[Position] = (),
                                     decimals: int = BASE_UNIT_DECIMALS,
                                     report: Optional[ValidationReport] = None
                                     ) -> Dict[str, PositionProjection]:
    """
    Compute every position's daily share of the reward pool until maturity

    Args:
        positions: Upstream positions; malformed ones are skipped and reported
        reward_pool_data: RewardPoolDay rows or raw records
        contract_start_date: Epoch instant (protocol day 1)
        candidate_positions: Hypothetical extra positions whose shares are
            added on top of the reported daily totals
        decimals: Fixed-point decimals of base-unit amounts
        report: Caller-owned sink for skipped records and days

    Returns:
        Dict keyed by "user-id-type" to PositionProjection; empty on
        wholesale invalid input
    """
    if report is None:
        report = ValidationReport()
    try:
        epoch, rows, resolved, candidates = _prepare(
            positions, reward_pool_data, contract_start_date, report, candidate_positions, decimals
        )
    except InvalidInputError as exc:
        logger.error("Share calculation aborted: %s", exc)
        report.record(InvalidInputError, str(exc))
        return {}
    _, _, projections = _share_projections(epoch, rows, resolved, candidates, report)
    return projections


def calculate_future_max_supply(positions: List[Position],
                                reward_pool_data: List[Any],
                                current_supply: Any,
                                contract_start_date: Any,
                                current_protocol_day: Optional[int] = None,
                                *,
                                candidate_positions: Iterable[Position] = (),
                                decimals: int = BASE_UNIT_DECIMALS,
                                report: Optional[ValidationReport] = None
                                ) -> List[MaxSupplyProjection]:
    """
    Simulate the maximum total supply day by day

    Supply grows only on a position's maturity day, by its principal or
    minted amount plus the reward it accumulated through maturity. The
    simulation starts at current_protocol_day (default: first day in the
    series) because current_supply already contains everything settled
    before then.

    Args:
        positions: Upstream positions
        reward_pool_data: Extended reward pool series (rows or raw records)
        current_supply: Supply today in display units, net of burns
        contract_start_date: Epoch instant (protocol day 1)
        current_protocol_day: First day to simulate
        candidate_positions: Hypothetical extra positions (dilution analysis)
        decimals: Fixed-point decimals of base-unit amounts
        report: Caller-owned sink for skipped records and days

    Returns:
        One MaxSupplyProjection per day that has reward data, in day order
    """
    if report is None:
        report = ValidationReport()
    projections, _ = _simulate_supply(
        positions, reward_pool_data, current_supply, contract_start_date, current_protocol_day,
        candidate_positions, decimals, report,
    )
    return projections


def _simulate_supply(positions, reward_pool_data, current_supply, contract_start_date,
                     current_protocol_day, candidate_positions, decimals, report):
    # Resolves every position once and returns (daily projections, position projections)
    try:
        epoch, rows, resolved, candidates = _prepare(
            positions, reward_pool_data, contract_start_date, report, candidate_positions, decimals
        )
        supply = to_decimal(current_supply)
    except InvalidInputError as exc:
        logger.error("Max supply projection aborted: %s", exc)
        report.record(InvalidInputError, str(exc))
        return [], {}
    except ValueError as exc:
        logger.error("Max supply projection aborted: invalid current supply (%s)", exc)
        report.record(InvalidInputError, f"invalid current supply: {exc}")
        return [], {}

    if supply < 0:
        logger.warning("Current supply %s is negative, using 0", supply)
        supply = ZERO

    table, total_shares, projections = _share_projections(epoch, rows, resolved, candidates, report)
    max_day = max(table)
    start_day = current_protocol_day if current_protocol_day is not None else min(table)
    logger.debug("Projecting max supply for days %d to %d over %d positions",
                 start_day, max_day, len(projections))

    by_maturity: Dict[int, List[PositionProjection]] = {}
    for projection in projections.values():
        by_maturity.setdefault(projection.maturity_day, []).append(projection)

    cumulative_stakes = ZERO
    cumulative_creates = ZERO
    results: List[MaxSupplyProjection] = []
    for day in range(start_day, max_day + 1):
        row = table.get(day)
        if row is None:
            report.record(MissingRewardDataWarning, "no reward pool row, day skipped", day=day)
            continue

        active_positions = sum(1 for projection in projections.values() if projection.is_active_on(day))

        released_stakes = ZERO
        released_creates = ZERO
        for projection in by_maturity.get(day, []):
            settled = projection.settlement_amount + projection.reward_at_maturity
            if projection.position.type == 'stake':
                released_stakes += settled
            else:
                released_creates += settled
        cumulative_stakes += released_stakes
        cumulative_creates += released_creates

        total_max_supply = supply + cumulative_stakes + cumulative_creates
        if total_max_supply < supply:
            logger.warning("Max supply %s fell below current supply %s, clamping",
                           total_max_supply, supply)
            total_max_supply = supply
            cumulative_stakes = max(cumulative_stakes, ZERO)
            cumulative_creates = max(cumulative_creates, ZERO)

        results.append(MaxSupplyProjection(
            day=day,
            date=day_date(day, epoch),
            total_max_supply=total_max_supply,
            active_positions=active_positions,
            daily_reward_pool=row.reward_pool,
            total_shares=total_shares[day],
            breakdown=SupplyBreakdown(
                from_stakes=cumulative_stakes,
                from_creates=cumulative_creates,
                from_existing=supply,
            ),
            released_from_stakes=released_stakes,
            released_from_creates=released_creates,
        ))

    return results, projections


def simulate_dilution_effect(existing_positions: List[Position],
                             new_positions: List[Position],
                             reward_pool_data: List[Any],
                             contract_start_date: Any,
                             *,
                             decimals: int = BASE_UNIT_DECIMALS,
                             report: Optional[ValidationReport] = None) -> DilutionResult:
    """
    Compare projections with and without a set of new positions

    Both runs start at day 1 with zero current supply so the two series line
    up day for day. Dilution is what the baseline loses once the new
    positions compete for the same reward pools.
    """
    if report is None:
        report = ValidationReport()
    before = calculate_future_max_supply(
        existing_positions, reward_pool_data, 0, contract_start_date, 1,
        decimals=decimals, report=report,
    )
    # The baseline run already reported the existing positions; only carry
    # over what is new in the second pass
    new_positions = list(new_positions)
    second_pass = ValidationReport(log_skips=False)
    after = calculate_future_max_supply(
        existing_positions, reward_pool_data, 0, contract_start_date, 1,
        candidate_positions=new_positions, decimals=decimals, report=second_pass,
    )
    new_keys = {record_key(position) for position in new_positions}
    report.merge([entry for entry in second_pass.skipped
                  if entry.key is None or entry.key in new_keys])

    after_by_day = {projection.day: projection for projection in after}
    impact = []
    for projection in before:
        matching = after_by_day.get(projection.day)
        if matching is None:
            continue
        supply_before = projection.total_max_supply
        supply_after = matching.total_max_supply
        dilution_amount = supply_before - supply_after
        dilution_percentage = (
            dilution_amount / supply_before * 100 if supply_before > 0 else ZERO
        )
        impact.append(DilutionImpact(
            day=projection.day,
            date=projection.date,
            supply_before=supply_before,
            supply_after=supply_after,
            dilution_amount=dilution_amount,
            dilution_percentage=dilution_percentage,
        ))

    return DilutionResult(before_dilution=before, after_dilution=after, dilution_impact=impact)


def maturity_schedule(position_projections: Dict[str, PositionProjection]) -> pd.DataFrame:
    """Per maturity day: how many positions settle and how much each type releases"""
    records = []
    for projection in position_projections.values():
        records.append({
            'maturity_day': projection.maturity_day,
            'type': projection.position.type,
            'settlement': float(projection.settlement_amount + projection.reward_at_maturity),
        })
    columns = ['maturity_day', 'positions', 'from_stakes', 'from_creates', 'total']
    if not records:
        return pd.DataFrame(columns=columns)

    df = pd.DataFrame(records)
    grouped = df.pivot_table(index='maturity_day', columns='type', values='settlement',
                             aggfunc='sum', fill_value=0.0)
    schedule = pd.DataFrame({
        'maturity_day': grouped.index,
        'positions': df.groupby('maturity_day').size().reindex(grouped.index).values,
        'from_stakes': grouped['stake'].values if 'stake' in grouped else 0.0,
        'from_creates': grouped['create'].values if 'create' in grouped else 0.0,
    })
    schedule['total'] = schedule['from_stakes'] + schedule['from_creates']
    return schedule.reset_index(drop=True)[columns]


def projections_to_frame(projections: List[MaxSupplyProjection]) -> pd.DataFrame:
    """Flatten max supply projections into a float DataFrame for display"""
    return pd.DataFrame(
        [
            {
                'day': p.day,
                'date': p.date,
                'total_max_supply': float(p.total_max_supply),
                'active_positions': p.active_positions,
                'daily_reward_pool': float(p.daily_reward_pool),
                'total_shares': float(p.total_shares),
                'from_stakes': float(p.breakdown.from_stakes),
                'from_creates': float(p.breakdown.from_creates),
                'from_existing': float(p.breakdown.from_existing),
                'released_from_stakes': float(p.released_from_stakes),
                'released_from_creates': float(p.released_from_creates),
            }
            for p in projections
        ],
        columns=['day', 'date', 'total_max_supply', 'active_positions', 'daily_reward_pool',
                 'total_shares', 'from_stakes', 'from_creates', 'from_existing',
                 'released_from_stakes', 'released_from_creates'],
    )


def dilution_to_frame(result: DilutionResult) -> pd.DataFrame:
    return pd.DataFrame(
        [
            {
                'day': d.day,
                'date': d.date,
                'supply_before': float(d.supply_before),
                'supply_after': float(d.supply_after),
                'dilution_amount': float(d.dilution_amount),
                'dilution_percentage': float(d.dilution_percentage),
            }
            for d in result.dilution_impact
        ],
        columns=['day', 'date', 'supply_before', 'supply_after', 'dilution_amount',
                 'dilution_percentage'],
    )


def position_projections_to_frame(position_projections: Dict[str, PositionProjection]) -> pd.DataFrame:
    """One row per position: shares of pool earned through maturity"""
    return pd.DataFrame(
        [
            {
                'key': key,
                'type': projection.position.type,
                'origin_day': projection.origin_day,
                'maturity_day': projection.maturity_day,
                'active_days': sum(1 for entry in projection.daily_projections if entry.is_active),
                'settlement_amount': float(projection.settlement_amount),
                'total_projected_reward': float(projection.total_projected_reward),
            }
            for key, projection in position_projections.items()
        ],
        columns=['key', 'type', 'origin_day', 'maturity_day', 'active_days',
                 'settlement_amount', 'total_projected_reward'],
    )


class SupplyProjectionSimulation:
    """
    Max supply projection engine

    Ties the pieces together for one snapshot: parse the reward pool series,
    extrapolate it to the horizon, compute per-position share projections and
    run the day-by-day max supply simulation.
    """

    def __init__(self, positions: List[Position], reward_pool_data: List[Any],
                 current_supply: Any, config: Optional[ProjectionConfig] = None,
                 current_protocol_day: Optional[int] = None):
        """
        Initialize simulation with a position snapshot and configuration

        Args:
            positions: Normalized upstream positions
            reward_pool_data: Known reward pool rows (raw records or RewardPoolDay)
            current_supply: Supply today in display units, net of burns
            config: Projection configuration
            current_protocol_day: Today's protocol day; defaults to the first known day
        """
        self.positions = list(positions)
        self.reward_pool_data = list(reward_pool_data)
        self.current_supply = current_supply
        self.config = config or ProjectionConfig()
        self.current_protocol_day = current_protocol_day

        self.report = ValidationReport()
        self.extended_reward_pool: List[RewardPoolDay] = []
        self.results = {}

    def _current_supply_value(self) -> float:
        try:
            return max(float(to_decimal(self.current_supply)), 0.0)
        except ValueError:
            return 0.0

    def _extended_series(self) -> List[RewardPoolDay]:
        rows = coerce_reward_pool_data(self.reward_pool_data, self.report)
        horizon = self.config.extrapolation_horizon(self.current_protocol_day)
        return extend_reward_pool_data(rows, horizon, self.config.daily_reduction_rate, self.report)

    def run_simulation(self) -> Dict[str, Any]:
        """
        Run the complete projection

        Returns:
            Dictionary with daily time series (numpy float arrays), the
            structured projections and the validation report
        """
        self.report = ValidationReport()
        self.extended_reward_pool = self._extended_series()
        audit = validate_reward_pool_data(self.extended_reward_pool, self.config)

        epoch = self.config.contract_start_date
        decimals = self.config.base_unit_decimals
        projections, position_projections = _simulate_supply(
            self.positions, self.extended_reward_pool, self.current_supply, epoch,
            self.current_protocol_day, (), decimals, self.report,
        )
        frame = projections_to_frame(projections)

        self.results = {
            # Time series data
            'days': frame['day'].to_numpy(dtype=int),
            'dates': frame['date'].tolist(),
            'total_max_supply': frame['total_max_supply'].to_numpy(dtype=float),
            'active_positions': frame['active_positions'].to_numpy(dtype=int),
            'daily_reward_pool': frame['daily_reward_pool'].to_numpy(dtype=float),
            'total_shares': frame['total_shares'].to_numpy(dtype=float),
            'from_stakes': frame['from_stakes'].to_numpy(dtype=float),
            'from_creates': frame['from_creates'].to_numpy(dtype=float),
            'released_from_stakes': frame['released_from_stakes'].to_numpy(dtype=float),
            'released_from_creates': frame['released_from_creates'].to_numpy(dtype=float),

            # Structured outputs
            'projections': projections,
            'position_projections': position_projections,
            'extended_reward_pool': self.extended_reward_pool,
            'reward_pool_audit': audit,
            'validation_report': self.report,

            # Configuration snapshot
            'config': self.config,
            'current_supply': self._current_supply_value(),
        }
        logger.info("Projected %d days for %d position projections (%d records skipped)",
                    len(projections), len(position_projections), self.report.count())
        return self.results

    def get_summary_metrics(self) -> Dict[str, Any]:
        """
        Calculate summary metrics from simulation results

        Returns:
            Dictionary of key indicators
        """
        if not self.results:
            raise ValueError("Simulation must be run before calculating metrics")

        supply = self.results['total_max_supply']
        current_supply = self.results['current_supply']
        if len(supply) == 0:
            return {
                'final_max_supply': current_supply,
                'supply_growth': 0.0,
                'supply_growth_percentage': 0.0,
                'total_from_stakes': 0.0,
                'total_from_creates': 0.0,
                'peak_release_day': None,
                'peak_daily_release': 0.0,
                'peak_active_positions': 0,
                'projected_days': 0,
            }

        releases = self.results['released_from_stakes'] + self.results['released_from_creates']
        peak_index = int(np.argmax(releases))
        growth = float(supply[-1] - current_supply)
        return {
            'final_max_supply': float(supply[-1]),
            'supply_growth': growth,
            'supply_growth_percentage': growth / current_supply * 100 if current_supply > 0 else 0.0,
            'total_from_stakes': float(self.results['from_stakes'][-1]),
            'total_from_creates': float(self.results['from_creates'][-1]),
            'peak_release_day': int(self.results['days'][peak_index]) if releases[peak_index] > 0 else None,
            'peak_daily_release': float(releases[peak_index]),
            'peak_active_positions': int(np.max(self.results['active_positions'])),
            'projected_days': len(supply),
        }

    def simulate_dilution(self, new_positions: List[Position]) -> DilutionResult:
        """Dilution of the current snapshot by hypothetical new positions"""
        if not self.extended_reward_pool:
            self.extended_reward_pool = self._extended_series()
        new_positions = list(new_positions)
        if not self.results:
            return simulate_dilution_effect(
                self.positions, new_positions, self.extended_reward_pool,
                self.config.contract_start_date,
                decimals=self.config.base_unit_decimals, report=self.report,
            )

        # run_simulation already reported the snapshot's own positions
        dilution_report = ValidationReport(log_skips=False)
        result = simulate_dilution_effect(
            self.positions, new_positions, self.extended_reward_pool,
            self.config.contract_start_date,
            decimals=self.config.base_unit_decimals, report=dilution_report,
        )
        new_keys = {record_key(position) for position in new_positions}
        self.report.merge([entry for entry in dilution_report.skipped
                           if entry.key is None or entry.key in new_keys])
        return result
