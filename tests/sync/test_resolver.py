# tests/sync/test_resolver.py
"""Tests for conflict strategy selection and resolution."""

import pytest

from nodeweave.contracts.enums import ConflictStrategy, SyncSource
from nodeweave.contracts.sync import ConflictResolution, SyncChange, SyncItem
from nodeweave.core.config import SyncSettings
from nodeweave.sync.resolver import ConflictResolver


@pytest.fixture
def resolver() -> ConflictResolver:
    return ConflictResolver(SyncSettings(), now=lambda: 100.0)


def _item(*changes: SyncChange, retry_count: int = 0, source: SyncSource = SyncSource.CANVAS) -> SyncItem:
    return SyncItem(id="sync-1", source=source, changes=list(changes), retry_count=retry_count)


class TestDetermineStrategy:
    @pytest.mark.parametrize(
        ("message", "expected"),
        [
            ("Network unreachable", ConflictStrategy.RETRY),
            ("request timeout", ConflictStrategy.RETRY),
            ("version mismatch", ConflictStrategy.MERGE),
            ("edit conflict", ConflictStrategy.MERGE),
            ("corrupt payload", ConflictStrategy.ROLLBACK),
            ("Invalid state", ConflictStrategy.ROLLBACK),
            ("something else", ConflictStrategy.LATEST_WINS),
        ],
    )
    def test_message_rules(self, resolver: ConflictResolver, message: str, expected: ConflictStrategy) -> None:
        assert resolver.determine_strategy(RuntimeError(message)) == expected

    def test_set_default(self, resolver: ConflictResolver) -> None:
        resolver.set_default("source_priority")

        assert resolver.determine_strategy(RuntimeError("odd")) == ConflictStrategy.SOURCE_PRIORITY

    def test_retry_cannot_be_default(self, resolver: ConflictResolver) -> None:
        with pytest.raises(ValueError, match="retry"):
            resolver.set_default(ConflictStrategy.RETRY)

    def test_retry_rejected_in_settings(self) -> None:
        with pytest.raises(ValueError):
            SyncSettings(default_strategy="retry")


class TestStrategies:
    def test_latest_wins_picks_newer_timestamp(self, resolver: ConflictResolver) -> None:
        newer = SyncChange(type="update", target_id="n", data={"v": "new"}, timestamp=2000)
        older = SyncChange(type="update", target_id="n", data={"v": "old"}, timestamp=1000)

        resolution = resolver.resolve(ConflictStrategy.LATEST_WINS, _item(newer, older), RuntimeError("x"))

        assert resolution.resolved is True
        assert resolution.winner is newer
        assert resolution.data == {"v": "new"}

    def test_latest_wins_tie_keeps_first_change(self, resolver: ConflictResolver) -> None:
        first = SyncChange(type="update", target_id="n", data={"v": "first"}, timestamp=1000)
        second = SyncChange(type="update", target_id="n", data={"v": "second"}, timestamp=1000)

        resolution = resolver.resolve(ConflictStrategy.LATEST_WINS, _item(first, second), RuntimeError("x"))

        assert resolution.winner is first

    def test_source_priority_user_beats_projection_regardless_of_time(self, resolver: ConflictResolver) -> None:
        user = SyncChange(type="update", target_id="n", data={"v": "user"}, timestamp=1000, source="user")
        projection = SyncChange(
            type="update", target_id="n", data={"v": "projection"}, timestamp=2000, source="projection"
        )

        for ordering in ((user, projection), (projection, user)):
            resolution = resolver.resolve(ConflictStrategy.SOURCE_PRIORITY, _item(*ordering), RuntimeError("x"))
            assert resolution.winner is user

    def test_source_priority_falls_back_to_item_source(self, resolver: ConflictResolver) -> None:
        change = SyncChange(type="update", target_id="n", data=1)

        resolution = resolver.resolve(
            ConflictStrategy.SOURCE_PRIORITY, _item(change, source=SyncSource.STORE), RuntimeError("x")
        )

        assert resolution.winner is change

    def test_merge_combines_change_data(self, resolver: ConflictResolver) -> None:
        item = _item(
            SyncChange(type="update", target_id="n", data={"a": 1, "b": 1}),
            SyncChange(type="update", target_id="n", data={"b": 2}),
        )

        resolution = resolver.resolve(ConflictStrategy.MERGE, item, RuntimeError("x"))

        assert resolution.data == {"a": 1, "b": 2}
        assert resolution.requires_validation is True

    def test_rollback(self, resolver: ConflictResolver) -> None:
        resolution = resolver.resolve(ConflictStrategy.ROLLBACK, _item(), RuntimeError("x"))

        assert resolution.rollback_to == 70.0
        assert resolution.requires_reload is True

    @pytest.mark.parametrize(("retry_count", "delay"), [(0, 1.0), (1, 2.0), (2, 4.0)])
    def test_retry_backoff(self, resolver: ConflictResolver, retry_count: int, delay: float) -> None:
        resolution = resolver.resolve(ConflictStrategy.RETRY, _item(retry_count=retry_count), RuntimeError("x"))

        assert resolution.resolved is True
        assert resolution.delay == delay

    def test_retry_capped(self) -> None:
        resolver = ConflictResolver(SyncSettings(max_retries=10, max_delay_seconds=5.0), now=lambda: 0.0)

        assert resolver.resolve(ConflictStrategy.RETRY, _item(retry_count=6), RuntimeError("x")).delay == 5.0

    def test_retry_exhausted(self, resolver: ConflictResolver) -> None:
        resolution = resolver.resolve(ConflictStrategy.RETRY, _item(retry_count=3), RuntimeError("x"))

        assert resolution.resolved is False
        assert "exhausted" in resolution.reason

    def test_empty_item_unresolved(self, resolver: ConflictResolver) -> None:
        assert resolver.resolve(ConflictStrategy.LATEST_WINS, _item(), RuntimeError("x")).resolved is False

    def test_register_strategy_overrides(self, resolver: ConflictResolver) -> None:
        def always_unresolved(item: SyncItem, error: BaseException) -> ConflictResolution:
            return ConflictResolution(strategy=ConflictStrategy.MERGE, resolved=False, reason="custom")

        resolver.register_strategy("merge", always_unresolved)

        assert resolver.resolve(ConflictStrategy.MERGE, _item(), RuntimeError("x")).reason == "custom"

    def test_register_unknown_strategy_rejected(self, resolver: ConflictResolver) -> None:
        with pytest.raises(ValueError):
            resolver.register_strategy("coin_flip", lambda item, error: None)
