"""Session lifecycle orchestration.

``SessionOrchestrator`` drives one session through its state machine, pulling
in the identity, key, access and compute steps in dependency order and
guaranteeing that every per-session resource is released, whether the session
ends cleanly, fails or is cancelled by a signal.
"""

from __future__ import annotations

import itertools
import logging
import shutil
import signal
import threading
import time
import types
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from spotshell.constants import (
    AUTO_BID_MULTIPLIER,
    DEFAULT_MAX_COST,
    PROFILE_PROPAGATION_TIMEOUT_SECONDS,
    PROJECT_TAG_VALUE,
    SECONDS_PER_HOUR,
    SELF_TERMINATE_GRACE_SECONDS,
    SessionOutcome,
    SessionType,
)
from spotshell.core.exceptions import (
    CostCeilingExceededError,
    SessionCancelled,
    SessionFailure,
    SpotshellError,
    ValidationError,
)
from spotshell.core.history import HistoryRecord, HistoryRecorder
from spotshell.core.interfaces import ProviderClient
from spotshell.core.models import (
    AccessRule,
    ComputeRequest,
    ComputeRequestState,
    Instance,
    InstanceState,
    KeyPair,
    LaunchSpecification,
    RoleHandle,
    SpotRequestStatus,
)
from spotshell.core.prerequisites import PrerequisiteChecker
from spotshell.core.retry import poll_until
from spotshell.core.rollback import RollbackAction
from spotshell.core.session import Session, SessionState, generate_session_id
from spotshell.logging import SessionLogHandler
from spotshell.providers.aws.constants import (
    INSTANCE_POLICY_DOCUMENT,
    MANAGED_BY_TAG_KEY,
    SESSION_ID_TAG_KEY,
    TRUSTED_SERVICE_PRINCIPAL,
)
from spotshell.providers.dry_run import DryRunProviderClient
from spotshell.providers.exceptions import (
    ProviderError,
    ProviderNotFoundError,
    ProviderPermanentError,
)
from spotshell.services.access import AccessController
from spotshell.services.address import PublicAddressResolver, parse_public_address
from spotshell.services.identity import IdentityProvisioner
from spotshell.services.keys import KeyManager
from spotshell.services.ssh import InteractiveSession, SSHReadinessProbe, build_ssh_command
from spotshell.services.watcher import SessionWatcher
from spotshell.templates import render_user_data
from spotshell.utils import format_duration, validate_resource_name

logger = logging.getLogger(__name__)


def _profile_not_propagated(error: ProviderPermanentError) -> bool:
    return error.error_code == "InvalidParameterValue" and "instance profile" in str(error).lower()


class SessionOrchestrator:
    """Run one administrative session from nothing to fully torn down.

    Parameters
    ----------
    provider : ProviderClient
        Client for the target region. Wrapped in ``DryRunProviderClient``
        when ``dry_run`` is set.
    config : dict[str, Any]
        Effective, validated configuration
    history : HistoryRecorder | None
        Outcome log; defaults to ``<state_dir>/history.jsonl``
    dry_run : bool
        Validate and report, never mutate
    ssh_only : bool
        Only converge the key pair
    skip_prerequisites : bool
        Skip the environment checks
    force_rotate : bool
        Rotate the key pair regardless of its age
    address : str | None
        Caller address to authorize; resolved when omitted
    resolver : PublicAddressResolver | None
        Address resolver; built from the configured services when omitted
    probe_factory : Callable[..., Callable[[], bool]]
        Builds the SSH readiness probe
    session_factory : Callable[[list[str]], InteractiveSession]
        Builds the interactive shell runner
    which : Callable[[str], str | None]
        Executable lookup used by the prerequisite checks
    """

    def __init__(
        self,
        provider: ProviderClient,
        config: dict[str, Any],
        history: HistoryRecorder | None = None,
        dry_run: bool = False,
        ssh_only: bool = False,
        skip_prerequisites: bool = False,
        force_rotate: bool = False,
        address: str | None = None,
        resolver: PublicAddressResolver | None = None,
        probe_factory: Callable[..., Callable[[], bool]] = SSHReadinessProbe,
        session_factory: Callable[[list[str]], InteractiveSession] = InteractiveSession,
        which: Callable[[str], str | None] = shutil.which,
    ) -> None:
        self.provider = DryRunProviderClient(provider) if dry_run else provider
        self.config = config
        self.dry_run = dry_run
        self.ssh_only = ssh_only
        self.skip_prerequisites = skip_prerequisites
        self.force_rotate = force_rotate
        self.address = address
        self.probe_factory = probe_factory
        self.session_factory = session_factory
        self.which = which

        self.state_dir = Path(config["state_dir"]).expanduser()
        self.key_dir = Path(config["key_dir"]).expanduser()
        self.history = history or HistoryRecorder(self.state_dir / "history.jsonl")
        self.resolver = resolver or PublicAddressResolver(
            config["address_services"], timeout=config["address_timeout"]
        )

        self.session: Session | None = None
        self.interactive: InteractiveSession | None = None
        self._cancel_event = threading.Event()
        self._tearing_down = False
        self._log_handler: SessionLogHandler | None = None

    @property
    def session_type(self) -> SessionType:
        if self.dry_run:
            return SessionType.DRY_RUN
        if self.ssh_only:
            return SessionType.SSH_ONLY
        return SessionType.LAUNCH

    def run(self) -> Session:
        """Execute the configured mode to completion.

        Returns
        -------
        Session
            The finished session, in state ``DONE``

        Raises
        ------
        SessionFailure
            After rollback, if any step failed
        SessionCancelled
            After rollback, if a termination signal arrived
        """
        body = self._run_keys_only if self.ssh_only else self._run_launch
        return self._execute(self.session_type, body)

    def reconnect(self) -> Session:
        """Adopt the newest running spotshell instance and open a shell on it.

        The adopted instance is terminated when the shell exits, like any
        other session instance.
        """
        return self._execute(SessionType.RECONNECT, self._run_reconnect)

    def handle_signal(self, signum: int, frame: types.FrameType | None = None) -> None:
        """Cancel the session in response to SIGINT or SIGTERM.

        Raises
        ------
        SessionCancelled
            In the main thread, to unwind into the rollback path
        """
        name = signal.Signals(signum).name
        if self._tearing_down:
            logger.warning("Received %s while cleaning up; cleanup continues", name)
            return

        logger.warning("Received %s, cancelling session", name)
        self._cancel_event.set()
        if self.interactive is not None:
            self.interactive.forward_signal(signum)
        raise SessionCancelled(signum)

    def _execute(self, session_type: SessionType, body: Callable[[Session], None]) -> Session:
        max_cost = self.config["max_cost"]
        session = Session(
            session_id=generate_session_id(),
            instance_type=self.config["instance_type"],
            region=self.provider.region,
            max_cost=DEFAULT_MAX_COST if max_cost is None else float(max_cost),
            session_type=session_type,
            auto_bid=max_cost is None,
        )
        self.session = session
        started = time.monotonic()
        self._open_session_log(session)
        logger.info("Session %s (%s) in %s", session.session_id, session_type.value, session.region)

        try:
            body(session)
        except (SessionCancelled, KeyboardInterrupt) as e:
            cancelled = e if isinstance(e, SessionCancelled) else SessionCancelled(signal.SIGINT)
            logger.warning("%s", cancelled)
            self._rollback(session)
            self._record(session, started, SessionOutcome.CANCELLED, str(cancelled))
            self._close_session_log()
            if cancelled is e:
                raise
            raise cancelled from e
        except SessionFailure as e:
            logger.error("Session failed during %s", e)
            self._rollback(session)
            self._record(session, started, SessionOutcome.FAILED, f"{e.reason}: {e}")
            self._close_session_log()
            raise
        except Exception as e:
            logger.exception("Unexpected error, rolling back")
            self._rollback(session)
            self._record(session, started, SessionOutcome.FAILED, f"internal: {e}")
            self._close_session_log()
            raise

        self._record(session, started, SessionOutcome.SUCCESS, None)
        self._close_session_log()
        return session

    @contextmanager
    def _step(self, name: str, resource_id: str | None = None) -> Iterator[None]:
        """Wrap failures of one lifecycle step into ``SessionFailure``."""
        try:
            yield
        except (SessionCancelled, SessionFailure):
            raise
        except (SpotshellError, ProviderError, OSError) as e:
            raise SessionFailure(name, e, resource_id) from e

    @contextmanager
    def _phase(self, session: Session, name: str) -> Iterator[None]:
        """Record how long ``name`` took, once it completes."""
        started = time.monotonic()
        yield
        session.phase_seconds[name] = round(time.monotonic() - started, 3)

    def _run_keys_only(self, session: Session) -> None:
        keys = self._prepare()[1]
        self._check_prerequisites(session)
        self._ensure_key(session, keys)
        session.transition(SessionState.DONE)
        logger.info("Key pair %s is ready", keys.key_name)

    def _run_launch(self, session: Session) -> None:
        identity, keys, access = self._prepare()
        self._check_prerequisites(session)

        with self._phase(session, "identity"), self._step("provision identity"):
            role = identity.ensure_role(
                self.config["role_name"], TRUSTED_SERVICE_PRINCIPAL, INSTANCE_POLICY_DOCUMENT
            )
        session.transition(SessionState.IDENTITY_READY)

        key = self._ensure_key(session, keys)

        with self._phase(session, "access rule"), self._step("reconcile access rule"):
            rule = access.reconcile(self.address)
        session.transition(SessionState.ACCESS_READY)

        with self._step("check spot price"):
            self._check_cost(session)
        request = self._build_request(session, role, key, rule)

        if self.dry_run:
            self.provider.request_spot_instance(request)
            session.transition(SessionState.DONE)
            logger.info("Dry run complete; no resources were changed")
            return

        with self._phase(session, "spot launch"):
            self._request_compute(session, request)
            self._await_fulfillment(session)
            self._await_running(session)
        self._connect(session, key.private_key_path)

    def _run_reconnect(self, session: Session) -> None:
        keys, access = self._prepare()[1:]

        if not keys.private_key_path.exists():
            raise SessionFailure(
                "adopt instance",
                ValidationError(f"No local key at {keys.private_key_path} to reconnect with"),
            )

        with self._step("adopt instance"):
            instance = self._find_adoptable_instance()
            access.reconcile(self.address)
            session.spot_price = self.provider.get_spot_price(instance.instance_type or "")
            if session.auto_bid and session.spot_price is not None:
                session.max_cost = round(session.spot_price * AUTO_BID_MULTIPLIER, 4)

        session.instance_id = instance.instance_id
        session.spot_request_id = instance.spot_request_id
        session.public_ip = instance.public_ip
        if instance.instance_type:
            session.instance_type = instance.instance_type
        if instance.spot_request_id:
            self._push_release(session)
        self._push_terminate(session, instance.instance_id)
        logger.info("Adopted instance %s (%s)", instance.instance_id, instance.public_ip)
        session.transition(SessionState.INSTANCE_RUNNING)

        self._connect(session, keys.private_key_path)

    def _prepare(self) -> tuple[IdentityProvisioner, KeyManager, AccessController]:
        """Build and validate every component before any provider call."""
        with self._step("validate input"):
            max_cost = self.config["max_cost"]
            if max_cost is not None and float(max_cost) <= 0:
                raise ValidationError(f"max_cost must be positive, got {max_cost}")
            if self.address is not None:
                try:
                    self.address = parse_public_address(self.address)
                except ValueError as e:
                    raise ValidationError(
                        f"Refusing to authorize address {self.address!r}: {e}"
                    ) from e
            for field in ("role_name", "instance_profile_name"):
                validate_resource_name(self.config[field], field)

            identity = IdentityProvisioner(
                self.provider, instance_profile_name=self.config["instance_profile_name"]
            )
            keys = KeyManager(
                self.provider, self.config["key_name"], self.key_dir, dry_run=self.dry_run
            )
            access = AccessController(
                self.provider,
                self.config["security_group_name"],
                self.config["admin_port"],
                resolver=self.resolver,
            )
        return identity, keys, access

    def _check_prerequisites(self, session: Session) -> None:
        if self.skip_prerequisites:
            logger.warning("Skipping prerequisite checks (--skip-prerequisites)")
        else:
            with self._phase(session, "prerequisites"), self._step("check prerequisites"):
                PrerequisiteChecker(
                    self.provider, self.key_dir, which=self.which, repair=not self.dry_run
                ).check()
        session.transition(SessionState.PREREQS_OK)

    def _ensure_key(self, session: Session, keys: KeyManager) -> KeyPair:
        with self._phase(session, "key pair"), self._step("ensure key pair", keys.key_name):
            key = keys.ensure_key(self.config["key_rotation_days"], self.force_rotate)
        session.transition(SessionState.KEY_READY)
        return key

    def _check_cost(self, session: Session) -> None:
        price = self.provider.get_spot_price(session.instance_type)
        if price is None:
            logger.warning(
                "No spot price history for %s in %s; relying on the bid ceiling $%.4f/hour",
                session.instance_type,
                session.region,
                session.max_cost,
            )
            return

        session.spot_price = price
        if session.auto_bid:
            session.max_cost = round(price * AUTO_BID_MULTIPLIER, 4)
            logger.info(
                "No cost ceiling configured, bidding %.1fx the spot price",
                AUTO_BID_MULTIPLIER,
            )
        if price > session.max_cost:
            raise CostCeilingExceededError(price, session.max_cost)
        logger.info(
            "Spot price for %s: $%.4f/hour (ceiling $%.4f)",
            session.instance_type,
            price,
            session.max_cost,
        )

    def _build_request(
        self, session: Session, role: RoleHandle, key: KeyPair, rule: AccessRule
    ) -> ComputeRequest:
        with self._step("resolve image"):
            image_id = self.config.get("ami_id") or self.provider.resolve_image_id(
                self.config["ami_name_pattern"]
            )

        user_data = ""
        if self.config["self_terminate"]:
            grace = int(self.config["ssh_ready_timeout"]) + SELF_TERMINATE_GRACE_SECONDS
            user_data = render_user_data(grace_seconds=grace)

        spec = LaunchSpecification(
            image_id=image_id,
            instance_type=session.instance_type,
            key_name=key.name,
            security_group_id=rule.group_id,
            instance_profile_name=role.instance_profile_name,
            user_data=user_data,
            tags={SESSION_ID_TAG_KEY: session.session_id},
        )
        return ComputeRequest(
            instance_type=session.instance_type,
            max_price=session.max_cost,
            region=session.region,
            launch_spec=spec,
        )

    def _request_compute(self, session: Session, request: ComputeRequest) -> None:
        attempts = itertools.count(1)

        def submit() -> str | None:
            # One token per attempt; transport retries inside an attempt reuse it
            token = f"{session.session_id}-{next(attempts)}"
            try:
                return self.provider.request_spot_instance(replace(request, client_token=token))
            except ProviderPermanentError as e:
                if not _profile_not_propagated(e):
                    raise
                logger.info("Instance profile not visible to EC2 yet, retrying")
                return None

        # Registered before submitting so a request whose response never
        # arrives is still found by its session tag and cancelled
        self._push_release(session)
        with self._step("request spot instance"):
            request_id = self._poll(
                submit, "instance profile propagation", PROFILE_PROPAGATION_TIMEOUT_SECONDS
            )

        session.spot_request_id = request_id
        session.transition(SessionState.COMPUTE_REQUESTED)
        logger.info(
            "Requested %s spot instance (%s), bidding up to $%.4f/hour",
            session.instance_type,
            request_id,
            session.max_cost,
        )

    def _await_fulfillment(self, session: Session) -> None:
        request_id = session.spot_request_id

        def fulfilled() -> SpotRequestStatus | None:
            try:
                status = self.provider.describe_spot_request(request_id)
            except ProviderNotFoundError:
                return None
            if status.state in (ComputeRequestState.FAILED, ComputeRequestState.CANCELLED):
                raise ProviderPermanentError(
                    f"Spot request {request_id} ended as {status.status_code or status.state.value}: "
                    f"{status.message}",
                    error_code=status.status_code or status.state.value,
                    operation="RequestSpotInstances",
                )
            return status if status.is_fulfilled else None

        with self._step("wait for spot fulfillment", request_id):
            status = self._poll(
                fulfilled, "spot request fulfillment", self.config["spot_fulfillment_timeout"]
            )

        session.instance_id = status.instance_id
        self._push_terminate(session, status.instance_id)
        session.transition(SessionState.COMPUTE_FULFILLED)
        logger.info("Spot request fulfilled by instance %s", status.instance_id)

        with self._step("tag instance", status.instance_id):
            self.provider.tag_instance(
                status.instance_id,
                {MANAGED_BY_TAG_KEY: PROJECT_TAG_VALUE, SESSION_ID_TAG_KEY: session.session_id},
            )

    def _await_running(self, session: Session) -> None:
        instance_id = session.instance_id

        def running() -> Instance | None:
            instance = self.provider.describe_instance(instance_id)
            if instance is None:
                return None
            if instance.state == InstanceState.TERMINATED:
                raise ProviderPermanentError(
                    f"Instance {instance_id} entered {instance.provider_state} while booting",
                    error_code="InstanceTerminated",
                    operation="DescribeInstances",
                )
            if instance.state == InstanceState.RUNNING and instance.public_ip:
                return instance
            return None

        with self._step("wait for instance", instance_id):
            instance = self._poll(
                running, "instance to run", self.config["instance_running_timeout"]
            )

        session.public_ip = instance.public_ip
        session.transition(SessionState.INSTANCE_RUNNING)
        logger.info("Instance %s running at %s", instance_id, instance.public_ip)

    def _connect(self, session: Session, key_file: Path) -> None:
        """Wait for SSH, run the shell, then tear the instance down."""
        known_hosts = self.state_dir / "known_hosts" / session.session_id
        probe = self.probe_factory(
            host=session.public_ip,
            key_file=key_file,
            username=self.config["ssh_username"],
            known_hosts=known_hosts,
            port=self.config["admin_port"],
        )

        with self._step("wait for ssh", session.instance_id):
            self._poll(probe, f"SSH on {session.public_ip}", self.config["ssh_ready_timeout"])
        session.transition(SessionState.SSH_REACHABLE)

        command = build_ssh_command(
            host=session.public_ip,
            key_file=key_file,
            username=self.config["ssh_username"],
            port=self.config["admin_port"],
            known_hosts=known_hosts,
        )
        watcher = SessionWatcher(
            self.provider,
            session.instance_id,
            hourly_price=session.spot_price or 0.0,
            max_cost=session.max_cost,
            interval=self.config["watch_interval"],
        )

        session.transition(SessionState.SESSION_ACTIVE)
        self.interactive = self.session_factory(command)
        watcher.start()
        try:
            with self._step("interactive session", session.instance_id):
                returncode = self.interactive.run()
        finally:
            watcher.stop()
            self.interactive = None

        if returncode == 255:
            logger.warning("ssh exited with status 255 (connection error)")
        if watcher.interrupted:
            logger.warning("The instance went away during the session")

        self._terminate(session)

    def _terminate(self, session: Session) -> None:
        self._tearing_down = True
        session.transition(SessionState.TERMINATING)

        with self._step("terminate instance", session.instance_id):
            self._terminate_instance(session.instance_id)
            self._release_requests(session)

        session.rollback.clear()
        session.transition(SessionState.DONE)
        self._tearing_down = False
        logger.info("Instance %s terminated", session.instance_id)

    def _rollback(self, session: Session) -> None:
        self._tearing_down = True
        try:
            if session.is_terminal:
                return
            session.transition(SessionState.FAILED)
            session.transition(SessionState.ROLLBACK)
            if len(session.rollback):
                logger.info("Rolling back %d step(s)", len(session.rollback))
            errors = session.rollback.unwind()
            if errors:
                logger.warning(
                    "Rollback finished with %d error(s); check the resources listed above",
                    len(errors),
                )
            session.transition(SessionState.DONE)
        finally:
            self._tearing_down = False

    def _push_release(self, session: Session) -> None:
        session.rollback.push(
            RollbackAction(
                description="cancel spot requests",
                forward="request_spot_instance",
                resource_id=session.session_id,
                undo=lambda: self._release_requests(session),
            )
        )

    def _push_terminate(self, session: Session, instance_id: str) -> None:
        session.rollback.push(
            RollbackAction(
                description="terminate instance",
                forward="bind_instance",
                resource_id=instance_id,
                undo=lambda: self._terminate_instance(instance_id),
            )
        )

    def _release_requests(self, session: Session) -> None:
        """Cancel every live spot request of the session.

        Requests are found by their ``SessionId`` tag as well as by the
        recorded request id, so a request submitted twice or whose response
        was lost is released too.
        """
        bound = {
            status.request_id: status.instance_id
            for status in self.provider.find_spot_requests(session.session_id)
        }
        if session.spot_request_id:
            bound.setdefault(session.spot_request_id, None)
        if len(bound) > 1:
            logger.warning(
                "Session %s holds %d spot requests, cancelling all of them",
                session.session_id,
                len(bound),
            )
        for request_id, instance_id in bound.items():
            self._cancel_request(session, request_id, instance_id)

    def _cancel_request(
        self, session: Session, request_id: str, instance_id: str | None = None
    ) -> None:
        """Cancel a spot request and terminate any instance it bound meanwhile."""
        try:
            self.provider.cancel_spot_request(request_id)
        except ProviderNotFoundError:
            logger.debug("Spot request %s already gone", request_id)
        try:
            status = self.provider.describe_spot_request(request_id)
        except ProviderNotFoundError:
            status = None

        orphans = {instance_id, status.instance_id if status else None}
        for orphan in sorted(orphan for orphan in orphans if orphan):
            if orphan == session.instance_id:
                continue
            logger.warning(
                "Spot request %s bound instance %s outside the session, terminating it",
                request_id,
                orphan,
            )
            self._terminate_instance(orphan)

    def _terminate_instance(self, instance_id: str) -> None:
        try:
            self.provider.terminate_instance(instance_id)
        except ProviderNotFoundError:
            logger.debug("Instance %s already gone", instance_id)

    def _find_adoptable_instance(self) -> Instance:
        candidates = [
            instance
            for instance in self.provider.find_managed_instances()
            if instance.state == InstanceState.RUNNING and instance.public_ip
        ]
        if not candidates:
            raise ValidationError("No running spotshell instance found to reconnect to")
        if len(candidates) > 1:
            logger.warning(
                "%d running spotshell instances found, adopting the newest", len(candidates)
            )
        return candidates[0]

    def _poll(self, probe: Callable[[], Any], description: str, ceiling: float) -> Any:
        return poll_until(
            probe,
            description=description,
            ceiling=ceiling,
            interval=self.config["poll_interval"],
            backoff=self.config["poll_backoff"],
            max_interval=self.config["poll_max_interval"],
            cancel_event=self._cancel_event,
        )

    def _record(
        self,
        session: Session,
        started: float,
        outcome: SessionOutcome,
        cause: str | None,
    ) -> None:
        duration = time.monotonic() - started
        if session.instance_id and session.spot_price:
            session.estimated_cost = round(session.spot_price * duration / SECONDS_PER_HOUR, 6)

        record = HistoryRecord(
            timestamp=datetime.now(timezone.utc).isoformat(),
            session_id=session.session_id,
            session_type=session.session_type.value,
            outcome=outcome.value,
            duration_seconds=round(duration, 3),
            instance_type=session.instance_type,
            region=session.region,
            estimated_cost=session.estimated_cost,
            resource_ids=session.resource_ids,
            cause=cause,
            log_file=str(self._log_handler.path) if self._log_handler else None,
            phase_seconds=dict(session.phase_seconds),
        )
        try:
            self.history.record(record)
        except OSError as e:
            logger.warning("Could not write session history: %s", e)

        logger.info(
            "Session %s finished: %s after %s",
            session.session_id,
            outcome.value,
            format_duration(duration),
        )

    def _open_session_log(self, session: Session) -> None:
        try:
            self._log_handler = SessionLogHandler(self.state_dir / "logs", session.session_id)
        except OSError as e:
            logger.warning("Session log unavailable: %s", e)
            return
        self._log_handler.attach()

    def _close_session_log(self) -> None:
        if self._log_handler is not None:
            self._log_handler.detach()
            self._log_handler = None
