import logging
import random
from typing import Callable, Optional

from app.circuit_breaker.registry import CircuitBreakerRegistry
from app.services.config_store import ConfigStore

logger = logging.getLogger(__name__)


class RoutingSelector:
    """
    Weighted random choice over the active traffic rules.

    A rule is a candidate when it is active, its PSP's breaker is not open and
    its conditions match the payment. Weights are relative: the draw is over
    the candidates' total, so only ratios matter.
    """

    def __init__(
        self,
        config_store: ConfigStore,
        breakers: CircuitBreakerRegistry,
        rng: Callable[[], float] = random.random,
    ):
        self._config = config_store
        self._breakers = breakers
        self._rng = rng

    def select_psp(self, amount: int, currency: str, card_brand: Optional[str] = None) -> Optional[str]:
        candidates = [
            rule
            for rule in self._config.traffic_rules()
            if rule.is_active
            and not self._breakers.is_open(rule.psp)
            and (rule.conditions is None or rule.conditions.matches(amount, currency, card_brand))
        ]
        if not candidates:
            logger.warning(f"No routable PSP for {amount} {currency} brand={card_brand}")
            return None

        total = sum(rule.weight for rule in candidates)
        r = self._rng() * total
        for rule in candidates:
            r -= rule.weight
            if r <= 0:
                return rule.psp

        # Float rounding can leave r marginally positive
        return candidates[0].psp
