"""
Test suite for priority fee estimation.
"""

import pytest
from solders.pubkey import Pubkey

from smart_transaction.exceptions import RPCResponseError
from smart_transaction.fees import (
    DEFAULT_PRIORITY_FEE,
    HistoricalMedianFeeStrategy,
    RecommendedFeeStrategy,
    estimate_priority_fee,
    fee_strategy_for_cluster,
    lower_median_fee,
)
from smart_transaction.types import Cluster, DraftMessage

from conftest import FakeLedgerClient, readonly_instruction, writable_instruction


# ============================================================================
# Median Calculation
# ============================================================================

class TestLowerMedianFee:

    def test_zero_samples_discarded_before_sorting(self):
        assert lower_median_fee([5, 0, 10, 3, 0]) == 5

    def test_even_count_takes_upper_middle_index(self):
        # floor(4 / 2) = 2 -> third smallest
        assert lower_median_fee([40, 10, 30, 20]) == 30

    def test_single_sample(self):
        assert lower_median_fee([7]) == 7

    def test_no_samples_returns_default(self):
        assert lower_median_fee([]) == DEFAULT_PRIORITY_FEE == 0

    def test_only_zero_samples_returns_default(self):
        assert lower_median_fee([0, 0, 0]) == 0

    def test_custom_default(self):
        assert lower_median_fee([0], default=1_000) == 1_000


# ============================================================================
# Account Selection
# ============================================================================

class TestWritableAccounts:

    def test_read_only_accounts_excluded(self, fee_payer, fake_client):
        writable = Pubkey.new_unique()
        readonly = Pubkey.new_unique()
        draft = DraftMessage(fee_payer=fee_payer.pubkey(), anchor=fake_client.anchor).append_instructions([
            writable_instruction(writable),
            readonly_instruction(readonly),
        ])

        assert draft.writable_accounts() == [writable]

    def test_read_only_operation_contributes_nothing(self, fee_payer, fake_client):
        draft = DraftMessage(fee_payer=fee_payer.pubkey(), anchor=fake_client.anchor).append_instructions([
            readonly_instruction(Pubkey.new_unique(), Pubkey.new_unique()),
        ])

        assert draft.writable_accounts() == []

    def test_duplicates_collapse(self, fee_payer, fake_client):
        a, b = Pubkey.new_unique(), Pubkey.new_unique()
        draft = DraftMessage(fee_payer=fee_payer.pubkey(), anchor=fake_client.anchor).append_instructions([
            writable_instruction(a, b),
            writable_instruction(b, a),
        ])

        assert draft.writable_accounts() == [a, b]


# ============================================================================
# Strategy Selection
# ============================================================================

class TestStrategySelection:

    def test_devnet_uses_historical_median(self):
        assert isinstance(fee_strategy_for_cluster(Cluster.DEVNET), HistoricalMedianFeeStrategy)

    def test_mainnet_uses_recommended(self):
        assert isinstance(fee_strategy_for_cluster(Cluster.MAINNET), RecommendedFeeStrategy)

    def test_client_strategy_fixed_at_construction(self):
        assert isinstance(FakeLedgerClient(Cluster.DEVNET).fee_strategy, HistoricalMedianFeeStrategy)
        assert isinstance(FakeLedgerClient(Cluster.MAINNET).fee_strategy, RecommendedFeeStrategy)


# ============================================================================
# Estimation
# ============================================================================

class TestEstimatePriorityFee:

    @pytest.mark.asyncio
    async def test_devnet_median_of_recent_fees(self, draft):
        client = FakeLedgerClient(Cluster.DEVNET, fee_samples=[5, 0, 10, 3, 0])

        assert await estimate_priority_fee(client, draft) == 5
        assert client.calls["get_recent_priority_fees"] == 1
        assert client.calls["get_recommended_priority_fee"] == 0

    @pytest.mark.asyncio
    async def test_devnet_without_samples_returns_zero(self, draft):
        client = FakeLedgerClient(Cluster.DEVNET, fee_samples=[])

        assert await estimate_priority_fee(client, draft) == 0

    @pytest.mark.asyncio
    async def test_mainnet_uses_recommendation(self, draft):
        client = FakeLedgerClient(Cluster.MAINNET, recommended_fee=12_345)

        assert await estimate_priority_fee(client, draft) == 12_345
        assert client.calls["get_recommended_priority_fee"] == 1
        assert client.calls["get_recent_priority_fees"] == 0

    @pytest.mark.asyncio
    async def test_queries_only_writable_accounts(self, fee_payer):
        client = FakeLedgerClient(Cluster.DEVNET)
        writable = Pubkey.new_unique()
        draft = DraftMessage(fee_payer=fee_payer.pubkey(), anchor=client.anchor).append_instructions([
            readonly_instruction(Pubkey.new_unique()),
            writable_instruction(writable),
        ])

        await estimate_priority_fee(client, draft)

        assert client.fee_queries == [[writable]]

    @pytest.mark.asyncio
    async def test_errors_propagate_unchanged(self, draft):
        client = FakeLedgerClient(Cluster.DEVNET)
        error = RPCResponseError("node unavailable")
        client.fee_error = error

        with pytest.raises(RPCResponseError) as exc_info:
            await estimate_priority_fee(client, draft)

        assert exc_info.value is error
        assert client.calls["get_recent_priority_fees"] == 1
