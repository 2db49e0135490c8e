import threading
from abc import ABC, abstractmethod
from typing import Optional

from app.models.vault import TokenRecord


class TokenStore(ABC):
    """Persistence contract for the direct vault's token rows."""

    @abstractmethod
    def get(self, vault_token_id: str, active_only: bool = True) -> Optional[TokenRecord]: ...

    @abstractmethod
    def save(self, record: TokenRecord) -> None: ...

    @abstractmethod
    def deactivate(self, vault_token_id: str) -> bool:
        """Flip is_active to False. Returns False when the row does not exist."""

    @abstractmethod
    def find_by_fingerprint(self, fingerprint: str, tenant_id: Optional[str] = None) -> list[TokenRecord]: ...


class InMemoryTokenStore(TokenStore):
    """
    Process-local token table. All mutations are protected by a Lock.

    Trade-off: tokens are lost on restart. A deployment that runs more than
    one instance needs a shared store behind the same interface.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._rows: dict[str, TokenRecord] = {}

    def get(self, vault_token_id: str, active_only: bool = True) -> Optional[TokenRecord]:
        with self._lock:
            row = self._rows.get(vault_token_id)
            if row is None or (active_only and not row.is_active):
                return None
            return row.model_copy()

    def save(self, record: TokenRecord) -> None:
        with self._lock:
            self._rows[record.vault_token_id] = record.model_copy()

    def deactivate(self, vault_token_id: str) -> bool:
        with self._lock:
            row = self._rows.get(vault_token_id)
            if row is None:
                return False
            row.is_active = False
            return True

    def find_by_fingerprint(self, fingerprint: str, tenant_id: Optional[str] = None) -> list[TokenRecord]:
        with self._lock:
            return [
                row.model_copy()
                for row in self._rows.values()
                if row.fingerprint == fingerprint
                and row.is_active
                and (tenant_id is None or row.tenant_id == tenant_id)
            ]
