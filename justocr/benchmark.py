"""
Benchmark mode: run up to MAX_BENCHMARK_PROVIDERS providers over the same
pages concurrently and compare them.

Selected providers are split by where they execute:
- local: in this process, no network (executes_locally)
- direct: straight from this process to the provider with the user's key
- mediated: everything else, handed as one group to a MediatedTransport

Local and direct providers each run as their own task; the mediated group
is one task reading the transport's stream. Every finished provider is
applied to the BenchmarkSession as a patch keyed by provider id.
"""

import asyncio
import json
import logging
import math
import time
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Sequence, Tuple

from .base import OCRResult, PageImage
from .config import MAX_BENCHMARK_PROVIDERS
from .credentials import CredentialMode, CredentialResolver, ResolvedCredentials
from .exceptions import (
    InvalidSelection,
    MissingUserCredential,
    NoCredentialsAvailable,
    OCRError,
    UnknownProvider,
)
from .registry import ProviderRegistry
from .runner import run_provider
from .transport import InProcessMediatedTransport, MediatedTransport, is_done


NOT_PROCESSED = "Provider not processed"

# Runs left in flight by a closed benchmark, held until they finish
_detached_runs: set = set()


class OutcomeState(Enum):
    QUEUED = "pending"
    RUNNING = "processing"
    SUCCEEDED = "completed"
    FAILED = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (OutcomeState.SUCCEEDED, OutcomeState.FAILED)


@dataclass
class BenchmarkProviderOutcome:
    """Progress and final result of one provider in a benchmark."""
    provider_id: str
    provider_label: str
    result: Optional[OCRResult] = None
    error_message: Optional[str] = None
    state: OutcomeState = OutcomeState.QUEUED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "providerId": self.provider_id,
            "providerName": self.provider_label,
            "result": self.result.to_dict() if self.result else None,
            "error": self.error_message,
            "status": self.state.value,
        }


class BenchmarkSession:
    """
    Outcomes of one benchmark run, in selection order.

    Outcomes are only changed through apply_patch(); a terminal outcome is
    never changed again, and nothing changes once the session is aborted.
    """

    def __init__(self, outcomes: Sequence[BenchmarkProviderOutcome]):
        self.outcomes: Dict[str, BenchmarkProviderOutcome] = {o.provider_id: o for o in outcomes}
        self.completed_at_epoch_ms = 0
        self.aborted = False
        self._abort_listeners: List[Callable[[], None]] = []

    @classmethod
    def create(cls, provider_ids: Sequence[str], registry=ProviderRegistry) -> "BenchmarkSession":
        return cls([
            BenchmarkProviderOutcome(provider_id, registry.display_name(provider_id))
            for provider_id in provider_ids
        ])

    def __iter__(self):
        return iter(self.outcomes.values())

    def __len__(self):
        return len(self.outcomes)

    def is_complete(self) -> bool:
        return bool(self.outcomes) and all(o.state.is_terminal for o in self.outcomes.values())

    def mark_running(self) -> None:
        for outcome in self.outcomes.values():
            if outcome.state is OutcomeState.QUEUED:
                self.apply_patch(outcome.provider_id, OutcomeState.RUNNING)

    def apply_patch(
        self,
        provider_id: str,
        state: OutcomeState,
        result: Optional[OCRResult] = None,
        error: Optional[str] = None,
        provider_label: Optional[str] = None
    ) -> bool:
        """
        Update one outcome. Returns False when the patch was ignored: unknown
        id, outcome already terminal, or session aborted.
        """
        if self.aborted:
            return False
        outcome = self.outcomes.get(provider_id)
        if outcome is None:
            logging.warning(f"Ignoring update for provider not in benchmark: {provider_id}")
            return False
        if outcome.state.is_terminal:
            logging.debug(f"Ignoring update for finished provider: {provider_id}")
            return False

        if state is OutcomeState.SUCCEEDED:
            if result is None:
                state, error = OutcomeState.FAILED, error or "Processing failed"
            else:
                error = None
        elif state is OutcomeState.FAILED:
            result, error = None, error or "Processing failed"
        else:
            result, error = None, None

        outcome.state = state
        outcome.result = result
        outcome.error_message = error
        if provider_label:
            outcome.provider_label = provider_label

        if self.is_complete() and not self.completed_at_epoch_ms:
            self.completed_at_epoch_ms = int(time.time() * 1000)
        return True

    def on_abort(self, listener: Callable[[], None]) -> None:
        self._abort_listeners.append(listener)

    def remove_abort_listener(self, listener: Callable[[], None]) -> None:
        if listener in self._abort_listeners:
            self._abort_listeners.remove(listener)

    def abort(self) -> None:
        """Stop accepting results; in-flight work finishes but is discarded."""
        if self.aborted:
            return
        self.aborted = True
        logging.info("Benchmark aborted")
        for listener in self._abort_listeners:
            listener()


@dataclass
class DispatchPlan:
    local: List[str] = field(default_factory=list)
    direct: Dict[str, str] = field(default_factory=dict)
    mediated: List[str] = field(default_factory=list)
    rejected: Dict[str, str] = field(default_factory=dict)


def validate_selection(provider_ids: Sequence[str], registry=ProviderRegistry) -> List[str]:
    """
    De-duplicate the selection, keeping order.

    Raises:
        InvalidSelection: if it is empty or larger than MAX_BENCHMARK_PROVIDERS
        UnknownProvider: if any id is not registered
    """
    selected = list(dict.fromkeys(provider_ids))
    if not selected:
        raise InvalidSelection("Select at least one provider")
    if len(selected) > MAX_BENCHMARK_PROVIDERS:
        raise InvalidSelection(f"Select at most {MAX_BENCHMARK_PROVIDERS} providers")
    for provider_id in selected:
        if not registry.is_registered(provider_id):
            raise UnknownProvider(provider_id)
    return selected


def partition_providers(
    provider_ids: Sequence[str],
    resolver: Optional[CredentialResolver] = None,
    registry=ProviderRegistry
) -> DispatchPlan:
    """
    Sort providers into execution classes.

    A provider set to user-supplied credentials but with no stored key falls
    back to mediated execution when system credentials are available, and is
    rejected on its own otherwise. Without a resolver, every non-local
    provider is mediated.
    """
    plan = DispatchPlan()
    for provider_id in provider_ids:
        descriptor = registry.descriptor(provider_id)
        if descriptor.executes_locally:
            plan.local.append(provider_id)
            continue
        if not descriptor.accepts_user_credentials or resolver is None:
            plan.mediated.append(provider_id)
            continue

        try:
            credentials = resolver.resolve(provider_id)
        except MissingUserCredential as e:
            if resolver.system_available(provider_id):
                logging.info(f"No stored key for {provider_id}, using server credentials")
                plan.mediated.append(provider_id)
            else:
                plan.rejected[provider_id] = str(e)
            continue
        except NoCredentialsAvailable as e:
            plan.rejected[provider_id] = str(e)
            continue

        if credentials.mode is CredentialMode.USER_SUPPLIED:
            plan.direct[provider_id] = credentials.key
        else:
            plan.mediated.append(provider_id)
    return plan


def _result_from_event(event: Dict[str, Any]) -> Tuple[Optional[OCRResult], Optional[str]]:
    raw = event.get("result")
    error = event.get("error")
    if raw and event.get("status", "completed") == "completed":
        return OCRResult.from_dict(raw), None
    return None, str(error) if error else "Processing failed"


async def run_benchmark(
    provider_ids: Sequence[str],
    pages: Sequence[PageImage],
    resolver: Optional[CredentialResolver] = None,
    mediated: Optional[MediatedTransport] = None,
    registry=ProviderRegistry,
    session: Optional[BenchmarkSession] = None
) -> AsyncIterator[BenchmarkProviderOutcome]:
    """
    Run a benchmark and yield a snapshot of each outcome as it finishes.

    The generator ends when every outcome is terminal, or right away once
    the session is aborted. Closing the generator early stops reading the
    mediated stream. Pass a session to observe or abort the run from outside.

    Raises:
        InvalidSelection: if the selection is empty or too large
        UnknownProvider: if any id is not registered
    """
    selected = validate_selection(provider_ids, registry)
    if session is None:
        session = BenchmarkSession.create(selected, registry)
    elif list(session.outcomes) != selected:
        raise InvalidSelection("Session does not match the selected providers")

    mediated = mediated or InProcessMediatedTransport(registry)
    plan = partition_providers(selected, resolver, registry)
    logging.info(
        f"Benchmark: local={plan.local} direct={list(plan.direct)} "
        f"mediated={plan.mediated} rejected={list(plan.rejected)}"
    )

    queue: asyncio.Queue = asyncio.Queue()

    def wake_on_abort():
        queue.put_nowait(None)

    session.on_abort(wake_on_abort)
    session.mark_running()

    for provider_id, message in plan.rejected.items():
        queue.put_nowait((provider_id, None, message, None))

    async def run_individually(provider_id: str, key: Optional[str]):
        credentials = ResolvedCredentials(CredentialMode.USER_SUPPLIED, key) if key else None
        try:
            result = await run_provider(provider_id, pages, credentials, registry)
        except OCRError as e:
            logging.error(f"Benchmark provider {provider_id} failed: {e}")
            await queue.put((provider_id, None, str(e), None))
        else:
            await queue.put((provider_id, result, None, result.provider_label))

    async def consume_mediated(group: List[str]):
        pending = list(group)
        try:
            async for event in mediated.stream(group, pages):
                if session.aborted or is_done(event):
                    break
                provider_id = event.get("providerId")
                if provider_id not in pending:
                    logging.warning(f"Skipping stream event for unexpected provider: {provider_id}")
                    continue
                try:
                    result, error = _result_from_event(event)
                except (TypeError, ValueError, AttributeError) as e:
                    logging.warning(f"Skipping malformed result for {provider_id}: {e}")
                    continue
                pending.remove(provider_id)
                await queue.put((provider_id, result, error, event.get("providerName")))
        except (OCRError, asyncio.TimeoutError) as e:
            logging.error(f"Mediated providers failed: {e}")
            message = str(e) or "Processing failed"
        else:
            message = NOT_PROCESSED
        for provider_id in pending:
            await queue.put((provider_id, None, message, None))

    individual = [
        asyncio.ensure_future(run_individually(provider_id, None)) for provider_id in plan.local
    ] + [
        asyncio.ensure_future(run_individually(provider_id, key)) for provider_id, key in plan.direct.items()
    ]
    mediated_task = asyncio.ensure_future(consume_mediated(plan.mediated)) if plan.mediated else None

    try:
        while not session.is_complete() and not session.aborted:
            item = await queue.get()
            if item is None:
                break
            provider_id, result, error, label = item
            state = OutcomeState.SUCCEEDED if result is not None else OutcomeState.FAILED
            if session.apply_patch(provider_id, state, result, error, label):
                yield replace(session.outcomes[provider_id])
    finally:
        session.remove_abort_listener(wake_on_abort)
        if mediated_task is not None and not mediated_task.done():
            mediated_task.cancel()
        # Local and direct runs are left to finish; their results are dropped
        still_running = [task for task in individual if not task.done()]
        for task in still_running:
            _detached_runs.add(task)
            task.add_done_callback(_detached_runs.discard)
        if still_running:
            logging.info(f"{len(still_running)} provider run(s) still in flight, results will be discarded")


@dataclass
class ProviderStat:
    provider_id: str
    provider_name: str
    time_ms: Optional[int] = None
    char_count: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {"providerId": self.provider_id, "providerName": self.provider_name}
        if self.time_ms is not None:
            data["timeMs"] = self.time_ms
        if self.char_count is not None:
            data["charCount"] = self.char_count
        return data


@dataclass
class BenchmarkStats:
    fastest: Optional[ProviderStat] = None
    slowest: Optional[ProviderStat] = None
    most_characters: Optional[ProviderStat] = None
    least_characters: Optional[ProviderStat] = None
    average_time_ms: int = 0
    average_char_count: int = 0
    success_count: int = 0
    error_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fastest": self.fastest.to_dict() if self.fastest else None,
            "slowest": self.slowest.to_dict() if self.slowest else None,
            "mostCharacters": self.most_characters.to_dict() if self.most_characters else None,
            "leastCharacters": self.least_characters.to_dict() if self.least_characters else None,
            "averageTimeMs": self.average_time_ms,
            "averageCharCount": self.average_char_count,
            "successCount": self.success_count,
            "errorCount": self.error_count,
        }


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def compute_stats(session: BenchmarkSession) -> BenchmarkStats:
    """
    Descriptive statistics over succeeded outcomes.

    Ties go to the first outcome in selection order. Queued and running
    outcomes are not counted at all.
    """
    succeeded = [o for o in session if o.state is OutcomeState.SUCCEEDED and o.result is not None]
    error_count = sum(1 for o in session if o.state is OutcomeState.FAILED)

    if not succeeded:
        return BenchmarkStats(error_count=error_count)

    def time_of(outcome):
        return outcome.result.processing_time_ms

    def chars_of(outcome):
        return outcome.result.char_count

    fastest = min(succeeded, key=time_of)
    slowest = max(succeeded, key=time_of)
    most = max(succeeded, key=chars_of)
    least = min(succeeded, key=chars_of)

    return BenchmarkStats(
        fastest=ProviderStat(fastest.provider_id, fastest.provider_label, time_ms=time_of(fastest)),
        slowest=ProviderStat(slowest.provider_id, slowest.provider_label, time_ms=time_of(slowest)),
        most_characters=ProviderStat(most.provider_id, most.provider_label, char_count=chars_of(most)),
        least_characters=ProviderStat(least.provider_id, least.provider_label, char_count=chars_of(least)),
        average_time_ms=_round_half_up(sum(map(time_of, succeeded)) / len(succeeded)),
        average_char_count=_round_half_up(sum(map(chars_of, succeeded)) / len(succeeded)),
        success_count=len(succeeded),
        error_count=error_count,
    )


def _iso_timestamp(epoch_ms: int) -> str:
    moment = datetime.fromtimestamp(epoch_ms / 1000, tz=timezone.utc)
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def export_json(session: BenchmarkSession) -> str:
    """Outcomes and statistics as pretty-printed JSON."""
    completed_at = session.completed_at_epoch_ms or int(time.time() * 1000)
    data = {
        "timestamp": _iso_timestamp(completed_at),
        "statistics": compute_stats(session).to_dict(),
        "providers": [
            {
                "providerId": o.provider_id,
                "providerName": o.provider_label,
                "status": o.state.value,
                "error": o.error_message,
                "result": {
                    "text": o.result.full_text,
                    "processingTimeMs": o.result.processing_time_ms,
                    "characterCount": o.result.char_count,
                    "pageCount": o.result.page_count,
                } if o.result else None,
            }
            for o in session
        ],
    }
    return json.dumps(data, indent=2, ensure_ascii=False)


CSV_HEADERS = [
    "Provider ID",
    "Provider Name",
    "Status",
    "Processing Time (ms)",
    "Character Count",
    "Page Count",
    "Error",
]


def _quote(value: str) -> str:
    return '"' + value.replace('"', '""') + '"'


def export_csv(session: BenchmarkSession) -> str:
    """One row per outcome in selection order; numeric cells blank without a result."""
    rows = [",".join(CSV_HEADERS)]
    for o in session:
        result = o.result
        rows.append(",".join([
            o.provider_id,
            _quote(o.provider_label),
            o.state.value,
            str(result.processing_time_ms) if result else "",
            str(result.char_count) if result else "",
            str(result.page_count) if result else "",
            _quote(o.error_message) if o.error_message else "",
        ]))
    return "\n".join(rows)


__all__ = [
    'OutcomeState',
    'BenchmarkProviderOutcome',
    'BenchmarkSession',
    'DispatchPlan',
    'validate_selection',
    'partition_providers',
    'run_benchmark',
    'ProviderStat',
    'BenchmarkStats',
    'compute_stats',
    'export_json',
    'export_csv',
]
