from decimal import Decimal

import pandas as pd
import pytest

from stake_positions import Position
from supply_sim import RewardPoolDay

EPOCH = '2025-07-11T00:00:00Z'
WEI = 10 ** 18


def day_instant(day, hour=0):
    """ISO instant at the given hour of a protocol day"""
    instant = pd.Timestamp(EPOCH) + pd.Timedelta(days=day - 1, hours=hour)
    return instant.strftime("%Y-%m-%dT%H:%M:%SZ")


def make_position(user='0xaaa', id='1', type='stake', shares=1000, origin_day=1,
                  maturity_day=3, amount=0, block_number=1, **overrides):
    fields = dict(
        user=user,
        id=id,
        type=type,
        shares=str(shares * WEI) if isinstance(shares, int) else shares,
        maturity_date=day_instant(maturity_day),
        timestamp=day_instant(origin_day),
        staking_days=maturity_day - origin_day,
        principal=str(amount * WEI) if type == 'stake' else None,
        torus_amount=str(amount * WEI) if type == 'create' else None,
        block_number=block_number,
    )
    fields.update(overrides)
    return Position(**fields)


@pytest.fixture
def epoch():
    return EPOCH


@pytest.fixture
def reward_pool_records():
    return [
        {'day': 1, 'rewardPool': '1000', 'totalShares': '10000', 'penaltiesInPool': '0'},
        {'day': 2, 'rewardPool': '1100', 'totalShares': '15000', 'penaltiesInPool': '0'},
        {'day': 3, 'rewardPool': '1200', 'totalShares': '20000', 'penaltiesInPool': '0'},
    ]


@pytest.fixture
def position_a():
    return make_position(user='0x123', id='1', type='stake', shares=5000,
                         origin_day=1, maturity_day=3, amount=10000)


@pytest.fixture
def position_b():
    return make_position(user='0x456', id='2', type='create', shares=3000,
                         origin_day=1, maturity_day=2, amount=1000, block_number=2)


@pytest.fixture
def eight_known_days():
    return [
        RewardPoolDay(day=day, reward_pool=Decimal(100), total_shares=Decimal(50000))
        for day in range(1, 9)
    ]
