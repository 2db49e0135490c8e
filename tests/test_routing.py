"""Weighted routing selection and failover-rule resolution."""

import random

import pytest

from app.circuit_breaker.registry import CircuitBreakerRegistry
from app.engine.retry import RetryResolver
from app.engine.routing import RoutingSelector
from app.models.payment import FailureCategory, PSPCredentials
from app.models.rules import RetryRule, TrafficConditions, TrafficRule
from app.services.config_store import DEFAULT_ROUTING, InMemoryConfigStore


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _store(traffic: list[TrafficRule], retry: list[RetryRule] | None = None) -> InMemoryConfigStore:
    creds = {rule.psp: PSPCredentials() for rule in traffic}
    return InMemoryConfigStore(traffic_rules=traffic, retry_rules=retry or [], credentials=creds)


def _selector(store: InMemoryConfigStore, settings, rng=random.random) -> tuple[RoutingSelector, CircuitBreakerRegistry]:
    breakers = CircuitBreakerRegistry(settings)
    return RoutingSelector(store, breakers, rng=rng), breakers


# ---------------------------------------------------------------------------
# RoutingSelector
# ---------------------------------------------------------------------------

def test_weighted_split_converges_to_configured_ratio(settings):
    store = _store([TrafficRule(psp="stripe", weight=75), TrafficRule(psp="adyen", weight=25)])
    rng = random.Random(1234)
    selector, _ = _selector(store, settings, rng=rng.random)

    draws = [selector.select_psp(1000, "USD") for _ in range(10_000)]
    ratio = draws.count("stripe") / len(draws)

    assert 0.72 <= ratio <= 0.78
    assert set(draws) == {"stripe", "adyen"}


def test_weights_are_relative_to_candidate_total(settings):
    store = _store([TrafficRule(psp="stripe", weight=3), TrafficRule(psp="adyen", weight=1)])
    selector, _ = _selector(store, settings, rng=lambda: 0.74)
    assert selector.select_psp(1000, "USD") == "stripe"

    selector, _ = _selector(store, settings, rng=lambda: 0.76)
    assert selector.select_psp(1000, "USD") == "adyen"


def test_open_breaker_excludes_psp(settings):
    store = _store([TrafficRule(psp="stripe", weight=99), TrafficRule(psp="adyen", weight=1)])
    selector, breakers = _selector(store, settings)
    breakers.get("stripe").inject_failures(settings.CB_FAILURE_THRESHOLD)

    picks = {selector.select_psp(1000, "USD") for _ in range(200)}
    assert picks == {"adyen"}


def test_inactive_rule_is_skipped(settings):
    store = _store([
        TrafficRule(psp="stripe", weight=90, is_active=False),
        TrafficRule(psp="adyen", weight=10),
    ])
    selector, _ = _selector(store, settings)
    assert selector.select_psp(1000, "USD") == "adyen"


def test_no_candidates_returns_none(settings):
    store = _store([TrafficRule(psp="stripe", weight=100)])
    selector, breakers = _selector(store, settings)
    breakers.get("stripe").inject_failures(settings.CB_FAILURE_THRESHOLD)

    assert selector.select_psp(1000, "USD") is None


def test_empty_rule_set_returns_none(settings):
    selector, _ = _selector(_store([]), settings)
    assert selector.select_psp(1000, "USD") is None


def test_conditions_filter_currency_amount_and_brand(settings):
    store = _store([
        TrafficRule(
            psp="adyen",
            weight=100,
            conditions=TrafficConditions(currencies=["eur"], amount_gte=500, amount_lte=5000, card_brands=["visa"]),
        ),
        TrafficRule(psp="stripe", weight=1),
    ])
    selector, _ = _selector(store, settings, rng=lambda: 0.0)

    assert selector.select_psp(1000, "EUR", "VISA") == "adyen"
    assert selector.select_psp(1000, "USD", "visa") == "stripe"
    assert selector.select_psp(100, "EUR", "visa") == "stripe"
    assert selector.select_psp(9000, "EUR", "visa") == "stripe"
    assert selector.select_psp(1000, "EUR", "mastercard") == "stripe"
    # Brand restriction only applies when the payment names a brand
    assert selector.select_psp(1000, "EUR") == "adyen"


def test_rounding_fallback_returns_first_candidate(settings):
    store = _store([TrafficRule(psp="stripe", weight=0.1), TrafficRule(psp="adyen", weight=0.2)])
    selector, _ = _selector(store, settings, rng=lambda: 1.0000001)
    assert selector.select_psp(1000, "USD") == "stripe"


# ---------------------------------------------------------------------------
# RetryResolver
# ---------------------------------------------------------------------------

def _resolver(rules: list[RetryRule], settings) -> tuple[RetryResolver, CircuitBreakerRegistry]:
    store = _store([TrafficRule(psp="stripe", weight=1)], rules)
    breakers = CircuitBreakerRegistry(settings)
    return RetryResolver(store, breakers), breakers


def test_first_matching_rule_wins(settings):
    resolver, _ = _resolver([
        RetryRule(source_psp="stripe", target_psp="adyen", max_retries=2),
        RetryRule(source_psp="stripe", target_psp="sandbox", max_retries=2),
    ], settings)
    assert resolver.get_retry_psp("stripe", FailureCategory.PROCESSING_ERROR, 0) == "adyen"


def test_max_retries_bounds_attempt_number(settings):
    resolver, _ = _resolver([RetryRule(source_psp="stripe", target_psp="adyen", max_retries=2)], settings)
    assert resolver.get_retry_psp("stripe", FailureCategory.UNKNOWN, 1) == "adyen"
    assert resolver.get_retry_psp("stripe", FailureCategory.UNKNOWN, 2) is None


def test_category_restriction(settings):
    resolver, _ = _resolver([
        RetryRule(
            source_psp="stripe",
            target_psp="adyen",
            failure_categories=[FailureCategory.RATE_LIMIT],
            max_retries=3,
        ),
    ], settings)
    assert resolver.get_retry_psp("stripe", FailureCategory.RATE_LIMIT, 0) == "adyen"
    assert resolver.get_retry_psp("stripe", FailureCategory.CARD_DECLINED, 0) is None


def test_failure_code_restriction_applies_when_code_known(settings):
    resolver, _ = _resolver([
        RetryRule(source_psp="stripe", target_psp="adyen", failure_codes=["issuer_unavailable"], max_retries=3),
    ], settings)
    assert resolver.get_retry_psp("stripe", FailureCategory.UNKNOWN, 0, "issuer_unavailable") == "adyen"
    assert resolver.get_retry_psp("stripe", FailureCategory.UNKNOWN, 0, "do_not_honor") is None
    assert resolver.get_retry_psp("stripe", FailureCategory.UNKNOWN, 0) == "adyen"


def test_open_target_breaker_skips_rule(settings):
    resolver, breakers = _resolver([
        RetryRule(source_psp="stripe", target_psp="adyen", max_retries=2),
        RetryRule(source_psp="stripe", target_psp="sandbox", max_retries=2),
    ], settings)
    breakers.get("adyen").inject_failures(settings.CB_FAILURE_THRESHOLD)
    assert resolver.get_retry_psp("stripe", FailureCategory.PROCESSING_ERROR, 0) == "sandbox"


def test_rules_for_other_sources_are_ignored(settings):
    resolver, _ = _resolver([RetryRule(source_psp="adyen", target_psp="stripe", max_retries=2)], settings)
    assert resolver.get_retry_psp("stripe", FailureCategory.PROCESSING_ERROR, 0) is None


# ---------------------------------------------------------------------------
# Default routing
# ---------------------------------------------------------------------------

def test_default_routing_loads_two_sandboxed_psps():
    store = InMemoryConfigStore.from_dict(DEFAULT_ROUTING)
    assert store.psps() == ["stripe", "adyen"]
    assert [r.weight for r in store.traffic_rules()] == [75, 25]
    assert all(store.credentials(p).environment == "test" for p in store.psps())


@pytest.mark.parametrize("psp", ["stripe", "adyen"])
def test_default_routing_has_failover_edge(psp):
    store = InMemoryConfigStore.from_dict(DEFAULT_ROUTING)
    assert any(rule.source_psp == psp for rule in store.retry_rules())
