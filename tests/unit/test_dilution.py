"""Unit tests for the round simulator"""
import pytest

from equity_ledger.exceptions import InvalidInputError, InvalidStateError
from equity_ledger.services.dilution import (
    ESOP_POOL_HOLDER_ID,
    ProposedRound,
    new_investor_holder_id,
    simulate_round,
    simulate_rounds,
)
from equity_ledger.services.ownership import calculate_ownership


@pytest.fixture
def single_holder_summary(entry, common_class):
    return calculate_ownership([entry("founder", 9_000_000)], [common_class])


class TestSimulateRound:
    """Tests for single round projection"""

    def test_series_a_scenario(self, single_holder_summary):
        result = simulate_round(
            single_holder_summary,
            ProposedRound(name="Series A", investment_amount=4_000_000, pre_money_valuation=36_000_000),
        )

        assert result.price_per_share == pytest.approx(4.0)
        assert result.new_shares == 1_000_000
        assert result.total_shares_after == 10_000_000
        assert result.post_money_valuation == 40_000_000
        founder = result.dilution[0]
        assert founder.shares_after == 9_000_000
        assert founder.percent_after == pytest.approx(90.0)
        assert founder.dilution_percent == pytest.approx(10.0)

    def test_new_investor_holder(self, single_holder_summary):
        result = simulate_round(
            single_holder_summary,
            ProposedRound(name="Series A", investment_amount=4_000_000, pre_money_valuation=36_000_000),
        )
        investors = next(h for h in result.new_cap_table if h.shareholder_id == new_investor_holder_id("Series A"))

        assert investors.name == "Series A Investors"
        assert investors.type == "investor"
        assert investors.total_shares == 1_000_000
        assert investors.is_synthetic

    def test_dilution_identity(self, entry, common_class):
        summary = calculate_ownership(
            [entry("a", 5_000_000), entry("b", 3_000_000), entry("c", 1_000_000)],
            [common_class],
        )
        result = simulate_round(
            summary,
            ProposedRound(name="Seed", investment_amount=1_500_000, pre_money_valuation=9_000_000),
        )

        for position in result.dilution:
            assert position.percent_after == pytest.approx(position.shares_before / result.total_shares_after * 100)
            assert position.dilution_percent == pytest.approx(position.percent_before - position.percent_after)
        assert sum(h.percent_ownership for h in result.new_cap_table) == pytest.approx(100.0)

    def test_new_shares_are_floored(self, entry, common_class):
        summary = calculate_ownership([entry("founder", 3)], [common_class])
        result = simulate_round(summary, ProposedRound(name="Seed", investment_amount=10, pre_money_valuation=7))

        # price 7/3; 10 / (7/3) = 4.28...
        assert result.new_shares == 4

    def test_pool_top_up_creates_synthetic_holder(self, single_holder_summary):
        result = simulate_round(
            single_holder_summary,
            ProposedRound(
                name="Series A",
                investment_amount=4_000_000,
                pre_money_valuation=36_000_000,
                option_pool_increase=10,
            ),
        )

        assert result.option_pool_shares == 1_000_000
        assert result.total_shares_after == 11_000_000
        pool = next(h for h in result.new_cap_table if h.shareholder_id == ESOP_POOL_HOLDER_ID)
        assert pool.type == "company"
        assert pool.total_shares == 1_000_000

    def test_pool_top_up_goes_to_existing_company_holder(self, entry, common_class):
        summary = calculate_ownership(
            [entry("founder", 9_000_000), entry("treasury", 500_000, shareholder_type="company")],
            [common_class],
        )
        result = simulate_round(
            summary,
            ProposedRound(name="Seed", investment_amount=950_000, pre_money_valuation=9_500_000, option_pool_increase=5),
        )

        assert all(h.shareholder_id != ESOP_POOL_HOLDER_ID for h in result.new_cap_table)
        treasury = next(h for h in result.new_cap_table if h.shareholder_id == "treasury")
        assert treasury.total_shares == 500_000 + result.option_pool_shares

    def test_cap_table_sorted_by_shares(self, single_holder_summary):
        result = simulate_round(
            single_holder_summary,
            ProposedRound(name="Series A", investment_amount=40_000_000, pre_money_valuation=36_000_000),
        )
        shares = [h.total_shares for h in result.new_cap_table]

        assert shares == sorted(shares, reverse=True)

    def test_zero_shares_rejected(self, common_class):
        summary = calculate_ownership([], [common_class])

        with pytest.raises(InvalidStateError):
            simulate_round(summary, ProposedRound(name="Seed", investment_amount=1, pre_money_valuation=1))

    @pytest.mark.parametrize("investment,pre_money,top_up", [
        (1_000, 0, 0),
        (1_000, -5, 0),
        (-1, 1_000, 0),
        (1_000, 1_000, 100),
        (1_000, 1_000, -1),
    ])
    def test_invalid_terms_rejected(self, single_holder_summary, investment, pre_money, top_up):
        with pytest.raises(InvalidInputError):
            simulate_round(
                single_holder_summary,
                ProposedRound(
                    name="Bad",
                    investment_amount=investment,
                    pre_money_valuation=pre_money,
                    option_pool_increase=top_up,
                ),
            )


class TestSimulateRounds:

    def test_rounds_chain(self, single_holder_summary):
        result = simulate_rounds(single_holder_summary, [
            ProposedRound(name="Series A", investment_amount=4_000_000, pre_money_valuation=36_000_000),
            ProposedRound(name="Series B", investment_amount=10_000_000, pre_money_valuation=40_000_000),
        ])

        series_b = result.rounds[1]
        assert series_b.total_shares_before == 10_000_000
        assert series_b.price_per_share == pytest.approx(4.0)
        assert series_b.new_shares == 2_500_000

        founder = result.cumulative_dilution[0]
        assert founder.percent_before == pytest.approx(100.0)
        assert founder.percent_after == pytest.approx(9_000_000 / 12_500_000 * 100)
