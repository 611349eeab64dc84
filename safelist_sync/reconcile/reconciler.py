"""
Rule Reconciler — brings one tenant's safelist rule in line with the
desired domain list, then moves on to the next tenant.

Per tenant:
    Connecting -> ConnectFailed | RuleAbsent | RuleExists
    RuleAbsent -> Created | CreateFailed
    RuleExists -> NoOpNeeded | Updated | UpdateFailed
Every terminal state advances to the next tenant. Only a ConfigurationError
stops the run.
"""

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import AsyncExitStack
from typing import Any, AsyncContextManager, Callable, Iterable, Sequence

from ..config import RuleDefinition
from ..domains import DesiredDomains
from ..errors import ConfigurationError
from ..logsetup import tenant_logger
from ..retry import call_with_timeout
from .models import SafelistRule, TenantOutcome, TenantResult

logger = logging.getLogger("safelist_sync.reconcile")

SessionFactory = Callable[[str], AsyncContextManager[Any]]


def plan_domains(policy: str, desired: DesiredDomains, existing: Iterable[str]) -> list[str]:
    """
    Domain list to write when the rule exists but is missing entries.

    replace: exactly the desired list
    merge:   existing entries (original order) followed by new desired ones
    """
    if policy == "replace":
        return list(desired)
    if policy == "merge":
        merged = [d for d in existing]
        have = {d.lower() for d in merged}
        merged.extend(d for d in desired if d not in have)
        return merged
    raise ConfigurationError(f"Unknown merge policy '{policy}'")


class RuleReconciler:
    """
    Reconciles the safelist rule for each tenant.

    `session_factory(tenant)` must return an async context manager yielding
    an object with ``get_rule(name)``, ``create_rule(definition, domains)``
    and ``update_rule(definition, domains)``.
    """

    def __init__(
        self,
        session_factory: SessionFactory,
        desired: DesiredDomains,
        definition: RuleDefinition,
        policy: str = "replace",
        timeout: float = 120.0,
        dry_run: bool = False,
    ):
        self.session_factory = session_factory
        self.desired = desired
        self.definition = definition
        self.policy = policy
        self.timeout = timeout
        self.dry_run = dry_run

    async def reconcile_all(self, tenants: Sequence[str], workers: int = 1) -> list[TenantResult]:
        """
        Reconcile every tenant through a pool of at most `workers` concurrent
        tenants. Results come back in input order.
        """
        if not tenants:
            logger.info("No tenants to reconcile.")
            return []
        if not self.desired:
            raise ConfigurationError("Desired domain list is empty; nothing to safelist")

        semaphore = asyncio.Semaphore(max(1, workers))

        async def worker(tenant: str) -> TenantResult:
            async with semaphore:
                return await self.reconcile(tenant)

        logger.info(
            f"Reconciling rule '{self.definition.name}' on {len(tenants)} tenant(s) "
            f"({min(workers, len(tenants))} at a time, policy: {self.policy})"
        )
        completed = await asyncio.gather(
            *(worker(t) for t in tenants), return_exceptions=True
        )

        results: list[TenantResult] = []
        for tenant, outcome in zip(tenants, completed):
            if isinstance(outcome, ConfigurationError):
                raise outcome
            if isinstance(outcome, BaseException):
                logger.error(f"[{tenant}] Unexpected failure: {type(outcome).__name__}: {outcome}")
                outcome = TenantResult(
                    tenant=tenant,
                    outcome=TenantOutcome.CONNECT_FAILED,
                    error=f"{type(outcome).__name__}: {outcome}",
                )
            results.append(outcome)
        return results

    async def reconcile(self, tenant: str) -> TenantResult:
        """Perform exactly one of no-op / update / create against `tenant`."""
        log = tenant_logger(logger, tenant)
        result = TenantResult(tenant=tenant, dry_run=self.dry_run)
        started = time.monotonic()
        log.info("Connecting...")

        stack = AsyncExitStack()
        try:
            session = await call_with_timeout(
                lambda: stack.enter_async_context(self.session_factory(tenant)),
                self.timeout,
                f"Connecting to {tenant}",
            )
        except Exception as e:
            result.outcome = TenantOutcome.CONNECT_FAILED
            result.error = str(e)
            log.error(f"Connection failed, skipping tenant: {e}")
        else:
            try:
                await self._reconcile_rule(session, result, log)
            finally:
                # The outcome is already decided; a failed close does not change it
                try:
                    await stack.aclose()
                except Exception as e:
                    log.warning(f"Session did not close cleanly: {type(e).__name__}: {e}")

        result.duration_seconds = round(time.monotonic() - started, 2)
        return result

    async def _reconcile_rule(self, session: Any, result: TenantResult, log) -> None:
        name = self.definition.name

        try:
            rule: SafelistRule = await call_with_timeout(
                lambda: session.get_rule(name), self.timeout, f"Looking up rule '{name}'"
            )
        except Exception as e:
            result.outcome = TenantOutcome.LOOKUP_FAILED
            result.error = str(e)
            log.error(f"Rule lookup failed, skipping tenant: {e}")
            return

        prefix = "[DRY-RUN] " if self.dry_run else ""

        if rule.exists:
            missing = self.desired.missing_from(rule.existing_domains)
            if not missing:
                result.outcome = TenantOutcome.NOOP
                result.domains = list(rule.existing_domains)
                log.info(f"Rule '{name}' already lists every safelisted domain; nothing to add.")
                return

            domains = plan_domains(self.policy, self.desired, rule.existing_domains)
            try:
                await call_with_timeout(
                    lambda: session.update_rule(self.definition, domains),
                    self.timeout,
                    f"Updating rule '{name}'",
                )
            except Exception as e:
                result.outcome = TenantOutcome.UPDATE_FAILED
                result.error = str(e)
                log.error(f"Rule update failed: {e}")
                return

            result.outcome = TenantOutcome.UPDATED
            result.domains = domains
            result.added = missing
            log.info(f"{prefix}Added to rule '{name}': {', '.join(missing)}")
            log.info(f"{prefix}Rule '{name}' now lists: {', '.join(domains)}")
            return

        if not self.desired:
            raise ConfigurationError(
                f"Rule '{name}' is absent on {result.tenant} and the desired domain list is empty"
            )

        domains = list(self.desired)
        try:
            await call_with_timeout(
                lambda: session.create_rule(self.definition, domains),
                self.timeout,
                f"Creating rule '{name}'",
            )
        except Exception as e:
            result.outcome = TenantOutcome.CREATE_FAILED
            result.error = str(e)
            log.error(f"Rule creation failed: {e}")
            return

        result.outcome = TenantOutcome.CREATED
        result.domains = domains
        result.added = domains
        log.info(f"{prefix}Created rule '{name}' with: {', '.join(domains)}")
