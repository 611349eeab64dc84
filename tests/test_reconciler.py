"""Tests for the per-tenant rule reconciliation loop."""

import asyncio

import pytest

from safelist_sync.config import RuleDefinition
from safelist_sync.domains import DesiredDomains
from safelist_sync.errors import ConfigurationError
from safelist_sync.reconcile import RuleReconciler, TenantOutcome, plan_domains

from .fakes import FakeSessionFactory, FakeTenant

T1 = "contoso.onmicrosoft.com"
T2 = "fabrikam.onmicrosoft.com"
T3 = "northwind.onmicrosoft.com"


def make_reconciler(tenants, desired=("a.com", "b.com"), policy="replace", **kwargs):
    factory = FakeSessionFactory(tenants)
    reconciler = RuleReconciler(
        session_factory=factory,
        desired=DesiredDomains.from_values(desired),
        definition=RuleDefinition(),
        policy=policy,
        timeout=5,
        **kwargs,
    )
    return reconciler, factory


def reconcile_all(reconciler, tenants, workers=1):
    return asyncio.run(reconciler.reconcile_all(tenants, workers=workers))


# --- Scenario 1: rule absent -> create ---

def test_absent_rule_is_created_with_desired_domains():
    tenant = FakeTenant(rule_domains=None)
    reconciler, factory = make_reconciler({T1: tenant})

    [result] = reconcile_all(reconciler, [T1])

    assert result.outcome == TenantOutcome.CREATED
    assert tenant.writes == [("create", RuleDefinition().name, ["a.com", "b.com"])]
    assert result.domains == ["a.com", "b.com"]
    assert factory.closed == [T1]


def test_create_payload_is_enabled_and_enforcing():
    params = RuleDefinition().create_parameters(["a.com", "b.com"])

    assert params["SenderDomainIs"] == ["a.com", "b.com"]
    assert params["Enabled"] is True
    assert params["Mode"] == "Enforce"
    assert params["SetSCL"] == -1
    assert params["HeaderMatchesMessageHeader"] == "Authentication-Results"
    assert set(params["HeaderMatchesPatterns"]) == {"dmarc=pass", "dmarc=bestguesspass"}


# --- Scenario 2: rule missing a domain -> update ---

def test_existing_rule_missing_domain_is_updated():
    tenant = FakeTenant(rule_domains=["a.com"])
    reconciler, _ = make_reconciler({T1: tenant})

    [result] = reconcile_all(reconciler, [T1])

    assert result.outcome == TenantOutcome.UPDATED
    assert result.added == ["b.com"]
    assert tenant.writes == [("update", RuleDefinition().name, ["a.com", "b.com"])]


def test_update_logs_newly_added_domain(caplog):
    tenant = FakeTenant(rule_domains=["a.com"])
    reconciler, _ = make_reconciler({T1: tenant})

    with caplog.at_level("INFO", logger="safelist_sync.reconcile"):
        reconcile_all(reconciler, [T1])

    added = [r.getMessage() for r in caplog.records if "Added to rule" in r.getMessage()]
    assert added == [f"[{T1}] Added to rule '{RuleDefinition().name}': b.com"]


# --- Scenario 3: desired is a subset of existing ---

@pytest.mark.parametrize("policy", ["replace", "merge"])
def test_desired_subset_of_existing_is_noop(policy):
    tenant = FakeTenant(rule_domains=["a.com", "b.com"])
    reconciler, _ = make_reconciler({T1: tenant}, desired=["a.com"], policy=policy)

    [result] = reconcile_all(reconciler, [T1])

    assert result.outcome == TenantOutcome.NOOP
    assert tenant.writes == []
    assert tenant.rule_domains == ["a.com", "b.com"]


def test_noop_comparison_ignores_case():
    tenant = FakeTenant(rule_domains=["A.com", "B.COM"])
    reconciler, _ = make_reconciler({T1: tenant})

    [result] = reconcile_all(reconciler, [T1])

    assert result.outcome == TenantOutcome.NOOP


# --- Policies ---

def test_replace_policy_writes_exactly_desired():
    tenant = FakeTenant(rule_domains=["old.com", "a.com"])
    reconciler, _ = make_reconciler({T1: tenant}, policy="replace")

    reconcile_all(reconciler, [T1])

    assert tenant.rule_domains == ["a.com", "b.com"]


def test_merge_policy_keeps_existing_entries():
    tenant = FakeTenant(rule_domains=["old.com", "a.com"])
    reconciler, _ = make_reconciler({T1: tenant}, policy="merge")

    [result] = reconcile_all(reconciler, [T1])

    assert tenant.rule_domains == ["old.com", "a.com", "b.com"]
    assert result.added == ["b.com"]


def test_plan_domains_rejects_unknown_policy():
    with pytest.raises(ConfigurationError):
        plan_domains("append", DesiredDomains.from_values(["a.com"]), [])


@pytest.mark.parametrize("policy", ["replace", "merge"])
def test_second_run_is_noop(policy):
    tenant = FakeTenant(rule_domains=["x.com"])
    reconciler, _ = make_reconciler({T1: tenant}, policy=policy)

    [first] = reconcile_all(reconciler, [T1])
    [second] = reconcile_all(reconciler, [T1])

    assert first.outcome == TenantOutcome.UPDATED
    assert second.outcome == TenantOutcome.NOOP
    assert len(tenant.writes) == 1


# --- Failure isolation ---

def test_connect_failure_does_not_stop_later_tenants():
    tenants = {
        T1: FakeTenant(fail_connect=True),
        T2: FakeTenant(rule_domains=None),
        T3: FakeTenant(rule_domains=["a.com", "b.com"]),
    }
    reconciler, factory = make_reconciler(tenants)

    results = reconcile_all(reconciler, [T1, T2, T3])

    assert [r.outcome for r in results] == [
        TenantOutcome.CONNECT_FAILED,
        TenantOutcome.CREATED,
        TenantOutcome.NOOP,
    ]
    assert "AADSTS50020" in results[0].error
    assert factory.opened == [T2, T3]


def test_lookup_failure_skips_tenant_without_writing():
    tenant = FakeTenant(rule_domains=None, fail_lookup=True)
    reconciler, factory = make_reconciler({T1: tenant, T2: FakeTenant()})

    results = reconcile_all(reconciler, [T1, T2])

    assert results[0].outcome == TenantOutcome.LOOKUP_FAILED
    assert tenant.writes == []
    assert results[1].outcome == TenantOutcome.CREATED
    assert factory.closed == [T1, T2]


def test_update_failure_is_reported():
    tenant = FakeTenant(rule_domains=["a.com"], fail_write=True)
    reconciler, factory = make_reconciler({T1: tenant})

    [result] = reconcile_all(reconciler, [T1])

    assert result.outcome == TenantOutcome.UPDATE_FAILED
    assert "Set-TransportRule" in result.error
    assert factory.closed == [T1]


def test_create_failure_is_reported():
    tenant = FakeTenant(rule_domains=None, fail_write=True)
    reconciler, _ = make_reconciler({T1: tenant})

    [result] = reconcile_all(reconciler, [T1])

    assert result.outcome == TenantOutcome.CREATE_FAILED
    assert not result.succeeded


def test_close_failure_after_create_keeps_created_outcome(caplog):
    tenant = FakeTenant(rule_domains=None, fail_close=True)
    reconciler, factory = make_reconciler({T1: tenant, T2: FakeTenant()})

    with caplog.at_level("WARNING", logger="safelist_sync.reconcile"):
        results = reconcile_all(reconciler, [T1, T2])

    assert results[0].outcome == TenantOutcome.CREATED
    assert results[0].error == ""
    assert tenant.rule_domains == ["a.com", "b.com"]
    assert results[1].outcome == TenantOutcome.CREATED
    assert factory.closed == [T1, T2]
    assert any("did not close cleanly" in r.getMessage() for r in caplog.records)


def test_close_failure_after_noop_is_still_noop():
    tenant = FakeTenant(rule_domains=["a.com", "b.com"], fail_close=True)
    reconciler, _ = make_reconciler({T1: tenant})

    [result] = reconcile_all(reconciler, [T1])

    assert result.outcome == TenantOutcome.NOOP
    assert result.succeeded


def test_slow_lookup_times_out():
    tenant = FakeTenant(rule_domains=["a.com"], delay=1.0)
    reconciler, _ = make_reconciler({T1: tenant})
    reconciler.timeout = 0.05

    [result] = reconcile_all(reconciler, [T1])

    assert result.outcome == TenantOutcome.LOOKUP_FAILED
    assert "timed out" in result.error


def test_empty_desired_set_aborts_before_any_tenant():
    tenant = FakeTenant(rule_domains=None)
    reconciler, factory = make_reconciler({T1: tenant}, desired=[])

    with pytest.raises(ConfigurationError):
        reconcile_all(reconciler, [T1])
    assert factory.opened == []


def test_no_tenants_is_not_an_error():
    reconciler, factory = make_reconciler({})

    assert reconcile_all(reconciler, []) == []
    assert factory.opened == []


# --- Worker pool ---

def test_worker_pool_is_bounded_and_keeps_order():
    names = [f"t{i}.onmicrosoft.com" for i in range(8)]
    tenants = {n: FakeTenant(rule_domains=["a.com", "b.com"], delay=0.02) for n in names}
    reconciler, factory = make_reconciler(tenants)

    results = reconcile_all(reconciler, names, workers=3)

    assert [r.tenant for r in results] == names
    assert 1 < factory.max_active <= 3
    assert sorted(factory.closed) == sorted(names)


def test_single_worker_is_sequential():
    names = [T1, T2, T3]
    tenants = {n: FakeTenant(rule_domains=None, delay=0.01) for n in names}
    reconciler, factory = make_reconciler(tenants)

    reconcile_all(reconciler, names, workers=1)

    assert factory.max_active == 1
    assert factory.opened == names


def test_dry_run_flag_is_carried_on_results():
    tenant = FakeTenant(rule_domains=None)
    reconciler, _ = make_reconciler({T1: tenant}, dry_run=True)

    [result] = reconcile_all(reconciler, [T1])

    assert result.dry_run is True
