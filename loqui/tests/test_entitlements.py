"""
Tests for plan limit checks and enforcement.
"""
from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest

from loqui.core.errors import QuotaExceededError
from loqui.core.metrics import plan_limit_denied_total
from loqui.features.entitlements.service import LimitEnforcer, check_limit, usage_summary
from loqui.features.plans.catalog import PlanId, Resource
from loqui.features.usage.service import UsageAggregator
from loqui.models.tenant import Tenant


UTC = timezone.utc
ANCHOR = datetime(2026, 1, 15, 12, 0, tzinfo=UTC)
NOW = datetime(2026, 2, 10, tzinfo=UTC)
CYCLE_END = datetime(2026, 2, 15, 12, 0, tzinfo=UTC)


class CountingSource:
    def __init__(self, analyses=0, posts=0, automations=0):
        self.analyses, self.posts, self.automations = analyses, posts, automations

    def count_analyses(self, tenant_id, start, end):
        return self.analyses

    def count_scheduled_posts(self, tenant_id, start, end):
        return self.posts

    def count_automations(self, tenant_id):
        return self.automations


def _tenant(plan="free", **kwargs):
    return Tenant(tenant_id="tenant-1", plan=plan, cycle_anchor_at=ANCHOR, **kwargs)


@pytest.mark.parametrize("used,allowed", [(0, True), (2, True), (3, False), (4, False)])
def test_analyses_boundary_on_free(used, allowed):
    decision = check_limit("free", {Resource.ANALYSES: used}, Resource.ANALYSES)
    assert decision.allowed is allowed
    assert decision.limit == 3
    assert decision.used == used


def test_requested_batch_counts_against_cap():
    assert check_limit("starter", {Resource.SCHEDULED_POSTS: 15}, Resource.SCHEDULED_POSTS, requested=5).allowed
    assert not check_limit("starter", {Resource.SCHEDULED_POSTS: 16}, Resource.SCHEDULED_POSTS, requested=5).allowed


def test_unlimited_cap_always_allows():
    decision = check_limit("beta", {Resource.SCHEDULED_POSTS: 10_000}, Resource.SCHEDULED_POSTS)
    assert decision.allowed
    assert decision.limit is None


def test_cycle_end_only_for_cycle_scoped_resources():
    posts = check_limit("free", {Resource.SCHEDULED_POSTS: 5}, Resource.SCHEDULED_POSTS, cycle_end=CYCLE_END)
    autos = check_limit("free", {Resource.ACTIVE_AUTOMATIONS: 1}, Resource.ACTIVE_AUTOMATIONS, cycle_end=CYCLE_END)
    assert posts.cycle_end == CYCLE_END
    assert autos.cycle_end is None


def test_unlimited_plan_never_queries_usage():
    aggregator = MagicMock(spec=UsageAggregator)
    enforcer = LimitEnforcer(aggregator)

    for _ in range(3):
        decision = enforcer.enforce(_tenant("beta"), Resource.SCHEDULED_POSTS, NOW)
        assert decision.allowed

    assert aggregator.count.call_count == 0
    assert aggregator.usage.call_count == 0


def test_pro_automations_unlimited_but_posts_capped():
    aggregator = MagicMock(spec=UsageAggregator)
    aggregator.count.return_value = 75
    aggregator.cycle_for.return_value = MagicMock(end=CYCLE_END)
    enforcer = LimitEnforcer(aggregator)

    assert enforcer.evaluate(_tenant("pro"), Resource.ACTIVE_AUTOMATIONS, NOW).allowed
    assert aggregator.count.call_count == 0
    assert not enforcer.evaluate(_tenant("pro"), Resource.SCHEDULED_POSTS, NOW).allowed


def test_enforce_raises_quota_error_with_contract():
    enforcer = LimitEnforcer(UsageAggregator(CountingSource(posts=5)))

    with pytest.raises(QuotaExceededError) as exc_info:
        enforcer.enforce(_tenant("free"), Resource.SCHEDULED_POSTS, NOW)

    err = exc_info.value
    assert err.status_code == 403
    assert err.code == "plan_limit_reached"
    assert (err.limit, err.used) == (5, 5)
    assert err.cycle_end == CYCLE_END
    assert err.upgrade_required is True
    assert "Upgrade" in err.message

    payload = err.to_payload("rid-1")
    assert payload["cycleEnd"] == "2026-02-15T12:00:00Z"
    assert payload["upgradeRequired"] is True
    assert plan_limit_denied_total.value({"resource": "scheduled_posts", "plan": "free"}) == 1


def test_expired_beta_is_enforced_as_free():
    tenant = _tenant("beta", beta_expires_at=datetime(2026, 1, 1, tzinfo=UTC))
    enforcer = LimitEnforcer(UsageAggregator(CountingSource(analyses=3)))

    with pytest.raises(QuotaExceededError) as exc_info:
        enforcer.enforce(tenant, Resource.ANALYSES, NOW)
    assert exc_info.value.plan == PlanId.FREE.value


def test_usage_summary_statuses():
    summary = usage_summary(_tenant("starter"), UsageAggregator(CountingSource(analyses=8, posts=20, automations=1)), NOW)

    assert summary["plan"] == "starter"
    assert summary["usage"]["analyses"] == {"used": 8, "limit": 10, "remaining": 2, "status": "approaching_limit"}
    assert summary["usage"]["scheduled_posts"]["status"] == "at_limit"
    assert summary["usage"]["active_automations"]["status"] == "ok"
    assert summary["cycleEnd"] == "2026-02-15T12:00:00Z"
    assert summary["partial"] == []


def test_usage_summary_unlimited_has_no_remaining():
    summary = usage_summary(_tenant("beta"), UsageAggregator(CountingSource(posts=500)), NOW)
    assert summary["usage"]["scheduled_posts"] == {"used": 500, "limit": None, "remaining": None, "status": "ok"}
