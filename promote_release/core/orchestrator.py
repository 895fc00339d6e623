"""Promotion orchestrator: the central coordinator for promotion runs.

The Orchestrator wires the ArtifactLocator, IntegrityVerifier, Signer,
ManifestBuilder and Publisher into one forward-only run per
(channel, release), recording every state transition in the RunLedger.

A failed step ends the run in FAILED with the error's classification and
exit code; nothing is rolled back because nothing is visible before
cutover.  Running again starts a fresh run at DISCOVERING and relies on
each component skipping work that is already done.
"""

from __future__ import annotations

import logging
import threading
import uuid
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Any

from promote_release.config import PromoteConfig
from promote_release.core.channel_verifier import ChannelVerifier
from promote_release.core.locator import ArtifactLocator
from promote_release.core.manifest_builder import ManifestBuilder
from promote_release.core.production_guard import enforce_production_constraints
from promote_release.core.publisher import Publisher
from promote_release.core.retry import RetryPolicy
from promote_release.core.run_ledger import RunLedger
from promote_release.core.signer import Signer
from promote_release.core.state_machine import RunStateMachine
from promote_release.core.verifier import IntegrityVerifier
from promote_release.errors import (
    NotFound,
    PromotionError,
    RunCancelled,
    UnknownChannelError,
)
from promote_release.models.channels import Channel, ChannelPointer
from promote_release.models.release import PromotionRun, RunFailure
from promote_release.models.reports import ChannelVerificationReport
from promote_release.models.stages import RunState
from promote_release.signing.backend import LocalKeyBackend, SigningBackend
from promote_release.storage import build_layout, build_stores
from promote_release.storage.base import ObjectStore
from promote_release.storage.layout import StoreLayout

logger = logging.getLogger(__name__)


class PromotionOrchestrator:
    """Runs promotions for the configured channels.

    Every collaborator can be injected; anything not given is built from
    *config*.

    Parameters
    ----------
    config:
        Runtime configuration.  Uses a fresh ``PromoteConfig()`` if None.
    staging, production:
        Object stores.
    signing_backend:
        Backend holding the release signing key.
    ledger:
        Run ledger for the audit trail.
    retry:
        Retry policy shared by all components.
    layout:
        Key layout of both stores.
    """

    def __init__(
        self,
        config: PromoteConfig | None = None,
        *,
        staging: ObjectStore | None = None,
        production: ObjectStore | None = None,
        signing_backend: SigningBackend | None = None,
        ledger: RunLedger | None = None,
        retry: RetryPolicy | None = None,
        layout: StoreLayout | None = None,
    ) -> None:
        self.config = config or PromoteConfig()

        # Fails hard if production constraints are violated
        enforce_production_constraints(self.config)

        if staging is None or production is None:
            built_staging, built_production = build_stores(self.config)
            staging = staging or built_staging
            production = production or built_production
        self.staging = staging
        self.production = production
        self.layout = layout or build_layout(self.config)
        self.retry = retry or RetryPolicy.from_config(self.config)
        self.signing_backend = signing_backend or LocalKeyBackend.from_config(self.config)
        self.ledger = ledger or RunLedger(self.config.ledger_path)

        self.locator = ArtifactLocator(
            self.staging,
            self.layout,
            self.config.channels,
            override_release=self.config.override_release,
            retry=self.retry,
        )
        self.verifier = IntegrityVerifier(self.staging, retry=self.retry)
        self.builder = ManifestBuilder(self.layout)
        self.publisher = Publisher(
            self.staging, self.production, self.layout, retry=self.retry
        )

        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    @property
    def channels(self) -> list[str]:
        return list(self.config.channels)

    def _signer(self) -> Signer:
        return Signer(self.signing_backend, self.production, self.layout, retry=self.retry)

    def _channel_lock(self, channel: str) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault(channel, threading.Lock())

    # ------------------------------------------------------------------
    # Promotion
    # ------------------------------------------------------------------

    def promote(
        self,
        channel: str,
        release: str | None = None,
        *,
        dry_run: bool = False,
        cancel: threading.Event | None = None,
    ) -> PromotionRun:
        """Promote *channel* to *release* (or the newest staged release).

        Never raises for promotion failures: the returned run carries the
        terminal state and, on failure, the error's classification and exit
        code.  Errors outside the promotion taxonomy end the run as
        ``error`` with exit code 1.  Concurrent calls for the same channel
        are serialized.
        """
        if channel not in self.config.channels:
            # Fails at discovery; unknown names get no lock
            return self._run(channel, release, dry_run=dry_run, cancel=cancel)
        with self._channel_lock(channel):
            return self._run(channel, release, dry_run=dry_run, cancel=cancel)

    def _run(
        self,
        channel: str,
        release: str | None,
        *,
        dry_run: bool,
        cancel: threading.Event | None,
    ) -> PromotionRun:
        run_id = uuid.uuid4().hex
        machine = RunStateMachine(self.ledger, run_id, channel)
        run: dict[str, Any] = {
            "run_id": run_id,
            "channel": channel,
            "dry_run": dry_run,
            "started_at": datetime.now(timezone.utc),
        }
        machine.start({"dry_run": dry_run, "requested_release": release or ""})
        logger.info("Run %s: promoting %s%s", run_id, channel, " (dry run)" if dry_run else "")

        def checkpoint() -> None:
            if cancel is not None and cancel.is_set():
                raise RunCancelled(f"Run {run_id} for {channel} cancelled before cutover")

        try:
            # -- discovering --------------------------------------------
            checkpoint()
            self.locator.check_channel(channel)
            observed = self.publisher.read_pointer(channel)
            resolved = self.locator.resolve_release(channel, release)
            machine.release = resolved
            run["release"] = resolved
            run["attempt"] = self.ledger.count_attempts(channel, resolved) + 1

            if observed.release == resolved:
                logger.info(
                    "Run %s: %s already points at %s; nothing to do", run_id, channel, resolved
                )
                machine.transition(
                    RunState.COMPLETE, detail={"no_op": True, "attempt": run["attempt"]}
                )
                return self._finish(run, machine, no_op=True)

            candidate = self.locator.locate(channel, resolved)

            # -- verifying ----------------------------------------------
            checkpoint()
            machine.transition(
                RunState.VERIFYING,
                detail={"attempt": run["attempt"], "artifact_count": len(candidate.artifacts)},
            )
            verified = self.verifier.verify_all(candidate.artifacts)

            # -- signing ------------------------------------------------
            checkpoint()
            machine.transition(RunState.SIGNING)
            signer = self._signer()
            signed = [signer.sign_artifact(a, channel, release=resolved) for a in verified]

            # -- manifest_building --------------------------------------
            checkpoint()
            machine.transition(
                RunState.MANIFEST_BUILDING,
                detail={"signed": signer.signed, "reused": signer.reused},
            )
            built = self.builder.build(candidate, signed)
            published_manifest = self.publisher.published_manifest(channel, resolved)
            if published_manifest is not None:
                built = self.builder.reconcile(built, published_manifest)
            manifest_signature = signer.sign_manifest(built.data, channel, release=resolved)
            manifest_key = self.layout.manifest_key(channel, resolved)
            run["manifest_key"] = manifest_key
            run["manifest_sha256"] = built.sha256

            if dry_run:
                logger.info(
                    "Run %s: dry run stops before publishing %s/%s", run_id, channel, resolved
                )
                return self._finish(run, machine)

            # -- publishing ---------------------------------------------
            checkpoint()
            machine.transition(RunState.PUBLISHING, detail={"manifest_sha256": built.sha256})
            published = self.publisher.publish(
                channel, resolved, signed, built, manifest_signature, cancel=cancel
            )
            run["writes"] = published.writes
            run["skipped"] = published.skipped

            # -- cutover ------------------------------------------------
            checkpoint()
            machine.transition(
                RunState.CUTOVER,
                detail={"writes": published.writes, "skipped": published.skipped},
            )
            pointer = ChannelPointer(
                channel=channel,
                release=resolved,
                version=built.manifest.version,
                manifest_key=manifest_key,
                manifest_sha256=built.sha256,
                manifest_signature_key=self.layout.manifest_signature_key(
                    channel, resolved, manifest_signature.key_id
                ),
                previous_release=observed.release,
            )
            self.publisher.cutover(pointer, observed)
            run["writes"] += 1

            machine.transition(
                RunState.COMPLETE,
                detail={
                    "version": built.manifest.version,
                    "manifest_key": manifest_key,
                    "manifest_sha256": built.sha256,
                    "artifact_count": len(signed),
                    "previous_release": observed.release or "",
                    "writes": run["writes"],
                },
            )
            logger.info(
                "Run %s: %s is live at %s (%d write(s))",
                run_id,
                channel,
                resolved,
                run["writes"],
            )
            return self._finish(run, machine)

        except PromotionError as exc:
            failed_in = machine.state
            machine.transition(
                RunState.FAILED,
                reason=str(exc),
                detail={"classification": exc.classification, "exit_code": exc.exit_code},
            )
            log = logger.warning if isinstance(exc, (NotFound, RunCancelled)) else logger.error
            log("Run %s: %s failed in %s: %s", run_id, channel, failed_in.value, exc)
            run["failure"] = RunFailure(
                classification=exc.classification,
                message=str(exc),
                exit_code=exc.exit_code,
                failed_in=failed_in,
            )
            return self._finish(run, machine)
        except Exception as exc:
            failed_in = machine.state
            logger.exception("Run %s: unexpected error promoting %s", run_id, channel)
            message = f"unexpected error: {exc}"
            if not machine.is_terminal:
                machine.transition(
                    RunState.FAILED,
                    reason=message,
                    detail={
                        "classification": PromotionError.classification,
                        "exit_code": PromotionError.exit_code,
                    },
                )
            run["failure"] = RunFailure(
                classification=PromotionError.classification,
                message=message,
                exit_code=PromotionError.exit_code,
                failed_in=failed_in,
            )
            return self._finish(run, machine)

    @staticmethod
    def _finish(run: dict[str, Any], machine: RunStateMachine, *, no_op: bool = False) -> PromotionRun:
        return PromotionRun(
            **run,
            state=machine.state,
            no_op=no_op,
            finished_at=datetime.now(timezone.utc),
        )

    def promote_many(
        self,
        channels: list[str] | None = None,
        *,
        dry_run: bool = False,
        cancel: threading.Event | None = None,
    ) -> dict[str, PromotionRun]:
        """Promote several channels concurrently.

        Channels share no mutable state, so each runs on its own worker.
        Defaults to every configured channel.
        """
        targets = list(dict.fromkeys(channels or self.channels))
        if not targets:
            return {}
        workers = max(1, min(self.config.max_concurrent_channels, len(targets)))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="promote") as pool:
            futures = {
                channel: pool.submit(self.promote, channel, dry_run=dry_run, cancel=cancel)
                for channel in targets
            }
            return {channel: future.result() for channel, future in futures.items()}

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    def history(self, channel: str) -> Channel:
        """Current pointer plus every release that reached cutover."""
        if channel not in self.config.channels:
            raise UnknownChannelError(channel, self.channels)
        observed = self.publisher.read_pointer(channel)
        return Channel(
            name=channel,
            current=observed.pointer,
            history=self.ledger.published_releases(channel),
        )

    def verify_channel(self, channel: str) -> ChannelVerificationReport:
        """Post-deploy smoke test of *channel*'s live release."""
        if channel not in self.config.channels:
            raise UnknownChannelError(channel, self.channels)
        verifier = ChannelVerifier(
            self.production, self.publisher, self._signer(), self.layout, retry=self.retry
        )
        return verifier.verify(channel)
