"""
Query Aggregator — broadcasts one prompt to every active session.

Each session runs as its own asyncio task. The gather at the end is the
only synchronization point and it waits for every task to settle; no
session's failure cancels or blocks another. Results come back in the
order of the fleet snapshot taken when the broadcast started, whatever
order the providers answered in.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Dict, List, Optional, Set

from oblivion.config import settings
from oblivion.errors import ProviderError
from oblivion.models.schemas import (
    Failure,
    FailureReason,
    QueryOptions,
    QueryResult,
    Role,
    Success,
)
from oblivion.services.conversation import ConversationLog
from oblivion.services.fleet import FleetManager
from oblivion.services.prompts import PromptLibrary
from oblivion.services.session import ProviderSession
from oblivion.services.usage import UsageLedger

logger = logging.getLogger(__name__)

# Awaited once per session as soon as its result settles (used for streaming)
SettledCallback = Callable[[QueryResult], Awaitable[None]]


class QueryAggregator:
    """
    Usage:
        aggregator = QueryAggregator(fleet)
        results = await aggregator.broadcast("What is 2+2?")

        # cancellable
        cancel = asyncio.Event()
        task = asyncio.create_task(aggregator.broadcast(prompt, cancel_event=cancel))
        cancel.set()   # in-flight sessions settle as Failure(cancelled)
    """

    def __init__(
        self,
        fleet: FleetManager,
        timeout_seconds: Optional[float] = None,
        ledger: Optional[UsageLedger] = None,
        prompts: Optional[PromptLibrary] = None,
    ):
        self.fleet = fleet
        self.timeout_seconds = timeout_seconds if timeout_seconds is not None else settings.query_timeout_seconds
        self.ledger = ledger
        self.prompts = prompts

    async def broadcast(
        self,
        prompt: str,
        options: Optional[QueryOptions] = None,
        cancel_event: Optional[asyncio.Event] = None,
        on_settled: Optional[SettledCallback] = None,
    ) -> List[QueryResult]:
        """
        Query every active session concurrently and collect all outcomes.

        Args:
            prompt: The user prompt, sent unchanged to every session
            options: Per-call options; `timeout_seconds` overrides the default.
                     Without a `system_prompt` the active library prompt is used.
            cancel_event: Setting it aborts all in-flight session queries
            on_settled: Awaited with each result as it settles

        Returns:
            One QueryResult per session in the snapshot, in snapshot order.
        """
        snapshot = self.fleet.list_active()
        if not snapshot:
            logger.warning("Broadcast requested with no active sessions")
            return []

        options = self._with_active_prompt(options or QueryOptions())
        timeout = options.timeout_seconds if options.timeout_seconds is not None else self.timeout_seconds
        # Resolved up front: a session removed mid-broadcast keeps writing to its detached log
        logs: Dict[str, ConversationLog] = {
            s.session_id: self.fleet.conversation(s.session_id) for s in snapshot
        }

        logger.info(f"Broadcasting to {len(snapshot)} sessions: {', '.join(s.label for s in snapshot)}")

        tasks: Dict[str, asyncio.Task] = {}
        # session_id of every session still awaiting its provider
        in_flight: Set[str] = set()
        for session in snapshot:
            tasks[session.session_id] = asyncio.create_task(
                self._query_session(
                    session, logs[session.session_id], prompt, options, timeout,
                    on_settled, cancel_event, in_flight,
                ),
                name=f"query-{session.label}",
            )

        watcher = None
        if cancel_event is not None:
            watcher = asyncio.create_task(self._cancel_when_set(cancel_event, tasks, in_flight))
        try:
            settled = await asyncio.gather(*tasks.values(), return_exceptions=True)
        finally:
            if watcher is not None:
                watcher.cancel()

        results: List[QueryResult] = []
        for session, outcome in zip(snapshot, settled):
            if isinstance(outcome, QueryResult):
                results.append(outcome)
                continue
            logger.error(f"Session {session.label} crashed outside the query path: {outcome!r}")
            failure = Failure(reason=FailureReason.INTERNAL, message=str(outcome))
            logs[session.session_id].append(Role.ERROR, failure.message)
            result = _result(session, failure)
            self._record(session, prompt, result)
            results.append(result)

        ok = sum(1 for r in results if r.succeeded)
        logger.info(f"Broadcast settled: {ok}/{len(results)} succeeded")
        return results

    async def _query_session(
        self,
        session: ProviderSession,
        log: ConversationLog,
        prompt: str,
        options: QueryOptions,
        timeout: float,
        on_settled: Optional[SettledCallback],
        cancel_event: Optional[asyncio.Event],
        in_flight: Set[str],
    ) -> QueryResult:
        log.append(Role.USER, prompt)
        if cancel_event is not None and cancel_event.is_set():
            outcome = Failure(reason=FailureReason.CANCELLED, message="Broadcast cancelled")
        else:
            outcome = await self._call_provider(session, prompt, options, timeout, cancel_event, in_flight)

        if isinstance(outcome, Success):
            log.append(Role.ASSISTANT, outcome.text)
        else:
            log.append(Role.ERROR, outcome.message)
            logger.warning(f"Session {session.label} failed ({outcome.reason.value}): {outcome.message}")

        result = _result(session, outcome)
        self._record(session, prompt, result)

        # Settled: the cancel event no longer reaches this task
        if on_settled is not None:
            try:
                await on_settled(result)
            except Exception as e:
                logger.warning(f"on_settled callback failed for {session.label}: {e}")
        return result

    async def _call_provider(
        self,
        session: ProviderSession,
        prompt: str,
        options: QueryOptions,
        timeout: float,
        cancel_event: Optional[asyncio.Event],
        in_flight: Set[str],
    ):
        in_flight.add(session.session_id)
        try:
            if timeout:
                outcome = await asyncio.wait_for(session.query(prompt, options), timeout)
            else:
                outcome = await session.query(prompt, options)
        except asyncio.CancelledError:
            # Cancellation from outside the broadcast propagates; the cancel event settles the session
            if cancel_event is None or not cancel_event.is_set():
                raise
            outcome = Failure(reason=FailureReason.CANCELLED, message="Broadcast cancelled")
        except asyncio.TimeoutError:
            outcome = Failure(
                reason=FailureReason.TIMEOUT,
                message=f"No response within {timeout:g}s",
            )
        except ProviderError as e:
            outcome = Failure(
                reason=FailureReason.PROVIDER_ERROR,
                message=e.message,
                status_code=e.status_code,
            )
        except Exception as e:
            logger.exception(f"Unexpected error querying {session.label}")
            outcome = Failure(reason=FailureReason.INTERNAL, message=f"{type(e).__name__}: {e}")
        finally:
            in_flight.discard(session.session_id)
        return outcome

    def _with_active_prompt(self, options: QueryOptions) -> QueryOptions:
        if options.system_prompt is not None or self.prompts is None:
            return options
        system_prompt = self.prompts.system_prompt()
        if not system_prompt:
            return options
        return options.model_copy(update={"system_prompt": system_prompt})

    @staticmethod
    async def _cancel_when_set(
        event: asyncio.Event, tasks: Dict[str, asyncio.Task], in_flight: Set[str]
    ) -> None:
        await event.wait()
        pending = [tasks[sid] for sid in list(in_flight) if not tasks[sid].done()]
        if pending:
            logger.info(f"Broadcast cancelled; aborting {len(pending)} in-flight queries")
        for task in pending:
            task.cancel()

    def _record(self, session: ProviderSession, prompt: str, result: QueryResult) -> None:
        if self.ledger is None:
            return
        self.ledger.record(
            session_id=session.session_id,
            provider_id=session.provider_id,
            model_name=session.model_name,
            prompt=prompt,
            response=result.text or "",
            latency_ms=result.latency_ms,
            succeeded=result.succeeded,
        )


def _result(session: ProviderSession, outcome) -> QueryResult:
    return QueryResult(
        session_id=session.session_id,
        provider_id=session.provider_id,
        model_name=session.model_name,
        outcome=outcome,
    )
