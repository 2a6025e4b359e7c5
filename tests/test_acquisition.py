"""
Tests for tiered usage acquisition.

Covers:
- Tier order and short-circuit on the first usable tier
- Usability rules (exception, empty, missing meter category)
- Client-side resource group filtering for detail tiers
- Estimation fallback, hour cap and the fatal no-inventory case
"""
import os
import sys
from datetime import date
from unittest.mock import Mock, patch

import pytest

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from quotalib.acquisition import (
    CostQueryStrategy,
    EstimationStrategy,
    UsageDetailStrategy,
    acquire_usage,
    build_default_strategies,
    estimation_hours,
)
from quotalib.constants import (
    KIND_SCALE_SET,
    KIND_VM,
    TIER_CONSUMPTION_DETAILS,
    TIER_CONSUMPTION_REST,
    TIER_COST_QUERY,
    TIER_ESTIMATION,
)
from quotalib.models import DateRange, Inventory, ResourceRecord
from quotalib.normalizer import ClientKeying
from quotalib.utils import UsageUnavailableError

# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def keying():
    return ClientKeying(use_client_tags=True)


@pytest.fixture
def january():
    return DateRange(start=date(2026, 1, 1), end=date(2026, 1, 31))


@pytest.fixture
def inventory():
    return Inventory(resources=[
        ResourceRecord(name="vm-1", resource_group="rg-a", location="eastus", kind=KIND_VM,
                       sku="Standard_D4s_v3", tags={"Client": "ClientA"}, cores=4),
        ResourceRecord(name="vmss-1", resource_group="rg-b", location="eastus", kind=KIND_SCALE_SET,
                       sku="Standard_D2s_v3", tags={"Client": "ClientB"}, cores=2, capacity=3),
    ])


# =============================================================================
# Helper Functions
# =============================================================================

COLUMNS = ['UsageQuantity', 'ResourceGroup', 'TagKey', 'TagValue',
           'MeterCategory', 'MeterSubCategory', 'ResourceType', 'ServiceName']


def query_row(quantity=10.0, rg="rg-a", client="ClientA", category="Virtual Machines", sub="Standard_D4s_v3"):
    return [quantity, rg, "Client", client, category, sub, "", ""]


def detail(rg="rg-a", category="Virtual Machines", quantity=5.0, client="ClientA"):
    return {"properties": {
        "resourceGroup": rg,
        "meterCategory": category,
        "meterSubCategory": "Standard_D4s_v3",
        "quantity": quantity,
        "tags": {"Client": client},
    }}


def make_strategies(keying, inventory, query_fn=None, sdk_fn=None, rest_fn=None, resource_groups=None):
    return [
        CostQueryStrategy(query_fn or Mock(return_value=(COLUMNS, [])), keying, resource_groups),
        UsageDetailStrategy(TIER_CONSUMPTION_DETAILS, sdk_fn or Mock(return_value=[]), keying, resource_groups),
        UsageDetailStrategy(TIER_CONSUMPTION_REST, rest_fn or Mock(return_value=[]), keying, resource_groups),
        EstimationStrategy(inventory, keying),
    ]


# =============================================================================
# Tier order
# =============================================================================

class TestTierOrder:
    def test_primary_usable_stops_cascade(self, keying, inventory, january):
        query_fn = Mock(return_value=(COLUMNS, [query_row()]))
        sdk_fn = Mock(return_value=[detail()])
        rest_fn = Mock(return_value=[detail()])

        result = acquire_usage(january, make_strategies(keying, inventory, query_fn, sdk_fn, rest_fn))

        assert result.source == TIER_COST_QUERY
        assert len(result.rows) == 1
        assert result.estimated is False
        assert query_fn.call_count == 1
        assert sdk_fn.call_count == 0
        assert rest_fn.call_count == 0

    def test_primary_empty_falls_to_secondary(self, keying, inventory, january):
        query_fn = Mock(return_value=(COLUMNS, []))
        sdk_fn = Mock(return_value=[detail(), detail(rg="rg-b", client="ClientB")])
        rest_fn = Mock(return_value=[detail()])

        result = acquire_usage(january, make_strategies(keying, inventory, query_fn, sdk_fn, rest_fn))

        assert result.source == TIER_CONSUMPTION_DETAILS
        assert [r.client for r in result.rows] == ["ClientA", "ClientB"]
        assert rest_fn.call_count == 0
        assert [a.source for a in result.attempts] == [TIER_COST_QUERY, TIER_CONSUMPTION_DETAILS]

    def test_secondary_before_tertiary(self, keying, inventory, january):
        calls = []
        query_fn = Mock(side_effect=lambda *a: calls.append('query') or (COLUMNS, []))
        sdk_fn = Mock(side_effect=lambda *a: calls.append('sdk') or [])
        rest_fn = Mock(side_effect=lambda *a: calls.append('rest') or [detail()])

        result = acquire_usage(january, make_strategies(keying, inventory, query_fn, sdk_fn, rest_fn))

        assert result.source == TIER_CONSUMPTION_REST
        assert calls == ['query', 'sdk', 'rest']

    def test_all_billing_tiers_fail_estimates(self, keying, inventory, january):
        query_fn = Mock(side_effect=Exception("401 Unauthorized"))
        sdk_fn = Mock(side_effect=Exception("Consumption unavailable"))
        rest_fn = Mock(return_value=[])

        result = acquire_usage(january, make_strategies(keying, inventory, query_fn, sdk_fn, rest_fn))

        assert result.source == TIER_ESTIMATION
        assert result.estimated is True
        assert len(result.attempts) == 4
        assert result.attempts[0].error == "401 Unauthorized"
        assert all(not a.usable for a in result.attempts[:3])

    def test_no_inventory_is_fatal(self, keying, january):
        with pytest.raises(UsageUnavailableError):
            acquire_usage(january, make_strategies(keying, None))


# =============================================================================
# Usability
# =============================================================================

class TestUsability:
    def test_query_rows_without_meter_category_unusable(self, keying, january):
        query_fn = Mock(return_value=(COLUMNS, [query_row(category=None)]))

        result = CostQueryStrategy(query_fn, keying).acquire(january)

        assert result.usable is False
        assert "MeterCategory" in result.error

    def test_query_passes_tag_and_resource_groups(self, keying, january):
        query_fn = Mock(return_value=(COLUMNS, [query_row()]))

        CostQueryStrategy(query_fn, keying, ["rg-a"]).acquire(january)
        CostQueryStrategy(query_fn, keying).acquire(january)

        assert query_fn.call_args_list[0].args == (january, "Client", ["rg-a"])
        assert query_fn.call_args_list[1].args == (january, "Client", None)

    def test_detail_without_meter_category_unusable(self, keying, january):
        fetch_fn = Mock(return_value=[{"properties": {"quantity": 1}}])

        result = UsageDetailStrategy(TIER_CONSUMPTION_REST, fetch_fn, keying).acquire(january)

        assert result.usable is False

    def test_detail_passes_max_count(self, keying, january):
        fetch_fn = Mock(return_value=[detail()])

        UsageDetailStrategy(TIER_CONSUMPTION_DETAILS, fetch_fn, keying, max_count=50).acquire(january)

        fetch_fn.assert_called_once_with(january, 50)

    def test_resource_group_filter_applied_before_usability(self, keying, january):
        fetch_fn = Mock(return_value=[detail(rg="rg-other"), detail(rg="RG-A", quantity=7.0)])

        result = UsageDetailStrategy(TIER_CONSUMPTION_DETAILS, fetch_fn, keying, ["rg-a"]).acquire(january)

        assert result.usable is True
        assert [r.quantity for r in result.rows] == [7.0]

    def test_filter_removing_everything_is_unusable(self, keying, january):
        fetch_fn = Mock(return_value=[detail(rg="rg-other")])

        result = UsageDetailStrategy(TIER_CONSUMPTION_DETAILS, fetch_fn, keying, ["rg-a"]).acquire(january)

        assert result.usable is False


# =============================================================================
# Estimation
# =============================================================================

class TestEstimation:
    def test_hours_capped(self):
        year = DateRange(start=date(2025, 1, 1), end=date(2025, 12, 31))
        week = DateRange(start=date(2026, 1, 1), end=date(2026, 1, 7))

        assert estimation_hours(year) == 720.0
        assert estimation_hours(week) == 168.0

    def test_rows_per_compute_resource(self, keying, inventory, january):
        result = EstimationStrategy(inventory, keying).acquire(january)

        assert result.usable is True
        rows = {r.client: r for r in result.rows}
        assert rows["ClientA"].quantity == 720.0
        assert rows["ClientB"].quantity == 3 * 720.0
        assert all(r.estimated for r in result.rows)

    def test_idempotent(self, keying, inventory, january):
        strategy = EstimationStrategy(inventory, keying)

        assert strategy.acquire(january).rows == strategy.acquire(january).rows

    def test_empty_inventory_still_usable(self, keying, january):
        result = EstimationStrategy(Inventory(), keying).acquire(january)

        assert result.usable is True
        assert result.rows == []

    def test_degraded_empty_compute_unusable(self, keying, january):
        result = EstimationStrategy(Inventory(compute_degraded=True), keying).acquire(january)

        assert result.usable is False


# =============================================================================
# Default strategies
# =============================================================================

class TestBuildDefaultStrategies:
    @patch('quotalib.transports.fetch_usage_details_rest')
    @patch('quotalib.transports.list_usage_details')
    @patch('quotalib.transports.query_costs')
    def test_order_and_wiring(self, mock_query, mock_sdk, mock_rest, keying, inventory, january):
        credential = Mock()
        mock_query.return_value = (COLUMNS, [])
        mock_sdk.return_value = []
        mock_rest.return_value = [detail()]

        strategies = build_default_strategies(credential, "sub-1", inventory, keying, ["rg-a"], 100)
        result = acquire_usage(january, strategies)

        assert [s.name for s in strategies] == [
            TIER_COST_QUERY, TIER_CONSUMPTION_DETAILS, TIER_CONSUMPTION_REST, TIER_ESTIMATION,
        ]
        assert result.source == TIER_CONSUMPTION_REST
        mock_query.assert_called_once_with(credential, "sub-1", january, "Client", ["rg-a"])
        mock_sdk.assert_called_once_with(credential, "sub-1", january, 100)
        mock_rest.assert_called_once_with(credential, "sub-1", january, 100)
