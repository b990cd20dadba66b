"""Tests for the platform fee split."""

import pytest

from solplay_sync.settlement.fees import BASIS_POINTS, split_payment


@pytest.mark.unit
class TestSplitPayment:
    def test_batch_of_fifteen_at_default_fee(self):
        split = split_payment(15, 1000, 500)

        assert split.total_payment == 15_000
        assert split.platform_fee == 750
        assert split.creator_amount == 14_250

    def test_fee_rounds_down_and_creator_gets_remainder(self):
        split = split_payment(1, 333, 500)

        assert split.platform_fee == 16
        assert split.creator_amount == 317
        assert split.platform_fee + split.creator_amount == split.total_payment

    def test_zero_chunks(self):
        split = split_payment(0, 1000, 500)

        assert (split.total_payment, split.platform_fee, split.creator_amount) == (0, 0, 0)

    @pytest.mark.parametrize("fee_bps", [0, BASIS_POINTS])
    def test_fee_bounds_are_accepted(self, fee_bps):
        split = split_payment(4, 250, fee_bps)

        assert split.platform_fee == (0 if fee_bps == 0 else 1000)

    @pytest.mark.parametrize(
        "args",
        [(-1, 1000, 500), (1, -5, 500), (1, 1000, -1), (1, 1000, BASIS_POINTS + 1)],
    )
    def test_rejects_invalid_input(self, args):
        with pytest.raises(ValueError):
            split_payment(*args)
