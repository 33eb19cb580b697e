from datetime import timedelta

import pytest

from ordergate.config import Settings
from ordergate.orders import (
    CustomerIdentity,
    DedupStrategy,
    DedupWindows,
    PaymentMethod,
    resolve_policy,
)

WINDOWS = DedupWindows()


def policy(name=None, phone=None, address=None, method=None, windows=WINDOWS):
    return resolve_policy(CustomerIdentity(name, phone, address), method, windows)


class TestStrategySelection:
    @pytest.mark.parametrize(
        ("name", "phone", "address", "expected"),
        [
            ("Kim", "010", "Seoul", DedupStrategy.NAME_PHONE),
            ("Kim", "010", None, DedupStrategy.NAME_PHONE),
            (None, "010", "Seoul", DedupStrategy.PHONE_ADDRESS),
            (None, "010", None, DedupStrategy.PHONE_ONLY),
            ("Kim", None, "Seoul", DedupStrategy.NAME_ADDRESS),
            ("Kim", None, None, DedupStrategy.NAME_ONLY),
            (None, None, "Seoul", DedupStrategy.ADDRESS_ONLY),
            (None, None, None, DedupStrategy.ANON),
        ],
    )
    def test_most_specific_strategy_wins(self, name, phone, address, expected):
        assert policy(name, phone, address).strategy == expected

    def test_filters_follow_strategy(self):
        assert dict(policy("Kim", "010").filters) == {
            "customer_name": "Kim",
            "customer_phone": "010",
        }
        assert dict(policy(None, "010", "Seoul").filters) == {
            "customer_phone": "010",
            "customer_address1": "Seoul",
        }
        assert dict(policy(address="Seoul").filters) == {"customer_address1": "Seoul"}

    def test_anonymous_defaults_to_card(self):
        resolved = policy()
        assert dict(resolved.filters) == {"payment_method": "CARD"}
        assert resolved.dedup_key == "anon:CARD"
        assert resolved.payment_method is None

    def test_anonymous_uses_requested_method(self):
        resolved = policy(method=PaymentMethod.CASH)
        assert dict(resolved.filters) == {"payment_method": "CASH"}
        assert resolved.payment_method == "CASH"


class TestWindows:
    def test_strong_strategy_uses_long_window(self):
        resolved = policy("Kim", "010")
        assert resolved.window == timedelta(seconds=60)
        assert resolved.window_ms == 60_000
        assert resolved.lookback_limit == 5

    @pytest.mark.parametrize(
        "identity",
        [
            dict(phone="010"),
            dict(name="Kim"),
            dict(address="Seoul"),
            dict(),
        ],
    )
    def test_weak_strategy_uses_short_window_and_small_lookback(self, identity):
        resolved = policy(**identity)
        assert resolved.window == timedelta(seconds=20)
        assert resolved.lookback_limit == 3

    def test_weak_lookback_never_exceeds_strong(self):
        windows = DedupWindows().with_strong(lookback=2)
        assert policy(name="Kim", windows=windows).lookback_limit == 2

    def test_builder_caps_lookback(self):
        assert DedupWindows().with_strong(lookback=100).strong_lookback == 20
        assert DedupWindows().with_strong(lookback=0).strong_lookback == 1

    def test_builder_keeps_unset_fields(self):
        windows = DedupWindows().with_strong(seconds=30).with_weak(seconds=5)
        assert windows.strong_window == timedelta(seconds=30)
        assert windows.weak_window == timedelta(seconds=5)
        assert windows.strong_lookback == 5

    def test_from_settings(self):
        settings = Settings(
            _env_file=None,
            public_order_duplicate_window_ms=90_000,
            public_order_anon_duplicate_window_ms=10_000,
            public_order_duplicate_lookback_limit=8,
        )
        windows = DedupWindows.from_settings(settings)
        assert windows.strong_window == timedelta(seconds=90)
        assert windows.weak_window == timedelta(seconds=10)
        assert windows.strong_lookback == 8
        assert windows.weak_lookback == 3
