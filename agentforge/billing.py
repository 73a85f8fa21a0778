"""
Credit ledger collaborator.

charge() is the transactional unit the engine relies on: the balance
decrement and the usage entry happen together or not at all.
"""

import threading
import logging
from typing import Any, Dict, List, Optional

from . import config
from .errors import InsufficientCredits
from .schemas import utc_now

logger = logging.getLogger(__name__)


class CreditLedger:
    def balance(self, user_id: str) -> float:
        raise NotImplementedError

    def charge(self, user_id: str, amount: float, workflow_id: Optional[str] = None, block_type: Optional[str] = None) -> Dict[str, Any]:
        raise NotImplementedError


class InMemoryCreditLedger(CreditLedger):
    def __init__(self, balances: Optional[Dict[str, float]] = None, default_balance: Optional[float] = None):
        self._lock = threading.Lock()
        self._balances: Dict[str, float] = dict(balances or {})
        self._usage: List[Dict[str, Any]] = []
        self.default_balance = config.DEFAULT_CREDITS if default_balance is None else default_balance

    def balance(self, user_id: str) -> float:
        with self._lock:
            return self._balances.get(user_id, self.default_balance)

    def top_up(self, user_id: str, amount: float) -> float:
        if amount <= 0:
            raise ValueError("Top-up amount must be positive")
        with self._lock:
            new_balance = self._balances.get(user_id, self.default_balance) + amount
            self._balances[user_id] = new_balance
        logger.info(f"Credits added for {user_id}: +{amount} (balance {new_balance})")
        return new_balance

    def charge(self, user_id: str, amount: float, workflow_id: Optional[str] = None, block_type: Optional[str] = None) -> Dict[str, Any]:
        with self._lock:
            current = self._balances.get(user_id, self.default_balance)
            if current < amount:
                raise InsufficientCredits(amount, current)
            new_balance = current - amount
            self._balances[user_id] = new_balance
            self._usage.append({
                "userId": user_id,
                "workflowId": workflow_id,
                "apiType": block_type,
                "creditsCharged": amount,
                "status": "success",
                "createdAt": utc_now(),
            })
        logger.debug(f"Charged {amount} credits to {user_id} for {block_type} (balance {new_balance})")
        return {"newBalance": new_balance}

    def usage(self, user_id: Optional[str] = None) -> List[Dict[str, Any]]:
        with self._lock:
            return [dict(entry) for entry in self._usage if user_id is None or entry["userId"] == user_id]
