"""
Persistence Layer.

Interfaces for the collaborators the pipeline writes to, plus in-memory
implementations used by the service and the test suite. A database-backed
deployment provides the same methods.
"""
import asyncio
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol

from pydantic import BaseModel, Field

from aeo_schema.config import config
from aeo_schema.models.schema import GenerationRecord, GenerationStatus
from aeo_schema.utils.logger import LayerLogger


def _now() -> datetime:
    return datetime.now(timezone.utc)


class RecordNotFoundError(KeyError):
    """No generation record with the given id."""


class CreditTransaction(BaseModel):
    """One ledger entry; negative amounts are consumption."""
    user_id: str
    amount: int
    description: str
    created_at: datetime = Field(default_factory=_now)


class UsageEvent(BaseModel):
    user_id: str
    action: str
    details: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=_now)


class LibraryUrl(BaseModel):
    """A URL in the user's library, with the generation that last covered it."""
    id: str
    user_id: str
    url: str
    generation_id: Optional[str] = None
    created_at: datetime = Field(default_factory=_now)


class GenerationStore(Protocol):
    async def create(self, user_id: str, url: str, **fields: Any) -> GenerationRecord: ...

    async def update(self, generation_id: str, **fields: Any) -> GenerationRecord: ...

    async def record_failure(
        self,
        generation_id: str,
        *,
        error_message: str,
        failure_reason: Optional[str] = None,
        failure_stage: Optional[str] = None,
        processing_time_ms: Optional[int] = None,
        stack_trace: Optional[str] = None,
        ai_model_provider: Optional[str] = None,
        request_context: Optional[Dict[str, Any]] = None,
        credits_cost: int = 0,
    ) -> GenerationRecord: ...

    async def get(self, generation_id: str) -> Optional[GenerationRecord]: ...

    async def increment_refinement_count(self, generation_id: str) -> int: ...


class CreditLedger(Protocol):
    async def get_balance(self, user_id: str) -> int: ...

    async def consume_credits_atomic(self, user_id: str, amount: int, description: str) -> bool: ...

    async def refund_credits(self, user_id: str, amount: int, description: str) -> None: ...


class UsageTracker(Protocol):
    async def track(self, user_id: str, action: str, **details: Any) -> None: ...


class UrlLibrary(Protocol):
    async def save_url(self, user_id: str, url: str) -> LibraryUrl: ...

    async def link_generation(self, url_id: str, generation_id: str) -> None: ...


class InMemoryGenerationStore:
    """Generation records keyed by an opaque uuid."""

    def __init__(self):
        self._records: Dict[str, GenerationRecord] = {}
        self.logger = LayerLogger("generation_store")

    async def create(self, user_id: str, url: str, **fields: Any) -> GenerationRecord:
        record = GenerationRecord(id=str(uuid.uuid4()), user_id=user_id, url=url, **fields)
        self._records[record.id] = record
        self.logger.log_action("create_generation", "completed", generation_id=record.id, url=url)
        return record.model_copy(deep=True)

    def _require(self, generation_id: str) -> GenerationRecord:
        record = self._records.get(generation_id)
        if record is None:
            raise RecordNotFoundError(generation_id)
        return record

    async def update(self, generation_id: str, **fields: Any) -> GenerationRecord:
        record = self._require(generation_id)
        updated = record.model_copy(update={**fields, "updated_at": _now()}, deep=True)
        self._records[generation_id] = updated
        return updated.model_copy(deep=True)

    async def record_failure(
        self,
        generation_id: str,
        *,
        error_message: str,
        failure_reason: Optional[str] = None,
        failure_stage: Optional[str] = None,
        processing_time_ms: Optional[int] = None,
        stack_trace: Optional[str] = None,
        ai_model_provider: Optional[str] = None,
        request_context: Optional[Dict[str, Any]] = None,
        credits_cost: int = 0,
    ) -> GenerationRecord:
        fields = {
            "status": GenerationStatus.FAILED,
            "error_message": error_message,
            "failure_reason": failure_reason,
            "failure_stage": failure_stage,
            "processing_time_ms": processing_time_ms,
            "stack_trace": stack_trace,
            "ai_model_provider": ai_model_provider,
            "request_context": request_context,
            "credits_cost": credits_cost,
        }
        return await self.update(generation_id, **{k: v for k, v in fields.items() if v is not None})

    async def get(self, generation_id: str) -> Optional[GenerationRecord]:
        record = self._records.get(generation_id)
        return record.model_copy(deep=True) if record else None

    async def increment_refinement_count(self, generation_id: str) -> int:
        record = self._require(generation_id)
        record.refinement_count += 1
        record.updated_at = _now()
        return record.refinement_count

    def all(self) -> List[GenerationRecord]:
        return [record.model_copy(deep=True) for record in self._records.values()]


class InMemoryCreditLedger:
    """
    Per-user credit balances.

    Consumption is serialized per user; a lock that cannot be acquired within
    ``lock_timeout`` seconds reports failure instead of raising, so callers
    can tell the user to retry.
    """

    def __init__(
        self,
        balances: Optional[Dict[str, int]] = None,
        default_balance: Optional[int] = None,
        lock_timeout: Optional[float] = None,
    ):
        self._balances: Dict[str, int] = dict(balances or {})
        self.default_balance = default_balance if default_balance is not None else config.DEFAULT_USER_CREDITS
        self.lock_timeout = lock_timeout if lock_timeout is not None else config.CREDIT_LOCK_TIMEOUT
        self._locks: Dict[str, asyncio.Lock] = {}
        self.transactions: List[CreditTransaction] = []
        self.logger = LayerLogger("credit_ledger")

    def _lock_for(self, user_id: str) -> asyncio.Lock:
        if user_id not in self._locks:
            self._locks[user_id] = asyncio.Lock()
        return self._locks[user_id]

    async def get_balance(self, user_id: str) -> int:
        return self._balances.get(user_id, self.default_balance)

    async def set_balance(self, user_id: str, amount: int) -> None:
        self._balances[user_id] = amount

    async def consume_credits_atomic(self, user_id: str, amount: int, description: str) -> bool:
        lock = self._lock_for(user_id)
        try:
            await asyncio.wait_for(lock.acquire(), timeout=self.lock_timeout)
        except asyncio.TimeoutError:
            self.logger.log_warning("credit lock timeout", user_id=user_id, timeout=self.lock_timeout)
            return False

        try:
            balance = self._balances.get(user_id, self.default_balance)
            if balance < amount:
                self.logger.log_decision("consume_credits", "insufficient balance", user_id=user_id, balance=balance)
                return False
            self._balances[user_id] = balance - amount
            self.transactions.append(CreditTransaction(user_id=user_id, amount=-amount, description=description))
            self.logger.log_action(
                "consume_credits", "completed", user_id=user_id, amount=amount, balance=balance - amount,
            )
            return True
        finally:
            lock.release()

    async def refund_credits(self, user_id: str, amount: int, description: str) -> None:
        async with self._lock_for(user_id):
            balance = self._balances.get(user_id, self.default_balance) + amount
            self._balances[user_id] = balance
            self.transactions.append(CreditTransaction(user_id=user_id, amount=amount, description=description))
        self.logger.log_action("refund_credits", "completed", user_id=user_id, amount=amount, balance=balance)


class InMemoryUsageTracker:
    def __init__(self):
        self.events: List[UsageEvent] = []

    async def track(self, user_id: str, action: str, **details: Any) -> None:
        self.events.append(UsageEvent(user_id=user_id, action=action, details=details))


class InMemoryUrlLibrary:
    """User URL library. Saving the same URL twice returns the existing entry."""

    def __init__(self):
        self._urls: Dict[str, LibraryUrl] = {}
        self.link_calls = 0

    async def save_url(self, user_id: str, url: str) -> LibraryUrl:
        for entry in self._urls.values():
            if entry.user_id == user_id and entry.url == url:
                return entry.model_copy()
        entry = LibraryUrl(id=str(uuid.uuid4()), user_id=user_id, url=url)
        self._urls[entry.id] = entry
        return entry.model_copy()

    async def link_generation(self, url_id: str, generation_id: str) -> None:
        entry = self._urls.get(url_id)
        if entry is None:
            raise KeyError(url_id)
        entry.generation_id = generation_id
        self.link_calls += 1

    def get(self, url_id: str) -> Optional[LibraryUrl]:
        entry = self._urls.get(url_id)
        return entry.model_copy() if entry else None
