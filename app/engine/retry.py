from typing import Optional

from app.circuit_breaker.registry import CircuitBreakerRegistry
from app.models.payment import FailureCategory
from app.services.config_store import ConfigStore


class RetryResolver:
    """Walks the failover graph: first matching RetryRule in rule-list order wins."""

    def __init__(self, config_store: ConfigStore, breakers: CircuitBreakerRegistry):
        self._config = config_store
        self._breakers = breakers

    def get_retry_psp(
        self,
        source_psp: str,
        failure_category: FailureCategory,
        attempt_number: int,
        failure_code: Optional[str] = None,
    ) -> Optional[str]:
        for rule in self._config.retry_rules():
            if rule.source_psp != source_psp:
                continue
            if attempt_number >= rule.max_retries:
                continue
            if rule.failure_categories and failure_category not in rule.failure_categories:
                continue
            if rule.failure_codes and failure_code and failure_code not in rule.failure_codes:
                continue
            if self._breakers.is_open(rule.target_psp):
                continue
            return rule.target_psp
        return None
