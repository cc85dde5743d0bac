"""Session record and its lifecycle state machine."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from spotshell.constants import SessionType
from spotshell.core.rollback import RollbackStack

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    """Lifecycle states of a session."""

    INIT = "init"
    PREREQS_OK = "prereqs-ok"
    IDENTITY_READY = "identity-ready"
    KEY_READY = "key-ready"
    ACCESS_READY = "access-ready"
    COMPUTE_REQUESTED = "compute-requested"
    COMPUTE_FULFILLED = "compute-fulfilled"
    INSTANCE_RUNNING = "instance-running"
    SSH_REACHABLE = "ssh-reachable"
    SESSION_ACTIVE = "session-active"
    TERMINATING = "terminating"
    FAILED = "failed"
    ROLLBACK = "rollback"
    DONE = "done"


_FORWARD_ORDER = [
    SessionState.INIT,
    SessionState.PREREQS_OK,
    SessionState.IDENTITY_READY,
    SessionState.KEY_READY,
    SessionState.ACCESS_READY,
    SessionState.COMPUTE_REQUESTED,
    SessionState.COMPUTE_FULFILLED,
    SessionState.INSTANCE_RUNNING,
    SessionState.SSH_REACHABLE,
    SessionState.SESSION_ACTIVE,
    SessionState.TERMINATING,
    SessionState.DONE,
]

_SHORTCUTS = {
    SessionState.INIT: (SessionState.INSTANCE_RUNNING,),
    SessionState.PREREQS_OK: (SessionState.KEY_READY,),
    SessionState.KEY_READY: (SessionState.DONE,),
    SessionState.ACCESS_READY: (SessionState.DONE,),
}


def _build_transitions() -> dict[SessionState, frozenset[SessionState]]:
    table = {}
    for current, following in zip(_FORWARD_ORDER, _FORWARD_ORDER[1:]):
        table[current] = frozenset(
            (following, SessionState.FAILED, *_SHORTCUTS.get(current, ()))
        )
    table[SessionState.FAILED] = frozenset((SessionState.ROLLBACK,))
    table[SessionState.ROLLBACK] = frozenset((SessionState.DONE,))
    table[SessionState.DONE] = frozenset()
    return table


ALLOWED_TRANSITIONS = _build_transitions()
"""Legal transitions.

The linear path has three shortcuts: key-only runs skip identity
(``PREREQS_OK -> KEY_READY -> DONE``), dry runs stop after the access rule
(``ACCESS_READY -> DONE``) and reconnects adopt a running instance
(``INIT -> INSTANCE_RUNNING``). Every non-terminal state may fail.
"""


def generate_session_id(now: datetime | None = None) -> str:
    """Build a time-derived session identifier."""
    now = now or datetime.now(timezone.utc)
    return f"spotshell-{int(now.timestamp())}"


@dataclass
class Session:
    """One ephemeral compute lifecycle, owned by a single orchestrator.

    Attributes
    ----------
    session_id : str
        Time-derived unique identifier
    instance_type : str
        Requested instance class
    region : str
        Target region
    max_cost : float
        Cost ceiling in USD per hour
    session_type : SessionType
        Launch mode the session was started in
    created_at : datetime
        UTC creation timestamp
    state : SessionState
        Current lifecycle state
    rollback : RollbackStack
        Pending reversals for per-session resources
    auto_bid : bool
        Whether ``max_cost`` is derived from the current spot price
    phase_seconds : dict[str, float]
        Duration of each completed provisioning phase
    """

    session_id: str
    instance_type: str
    region: str
    max_cost: float
    session_type: SessionType = SessionType.LAUNCH
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    state: SessionState = SessionState.INIT
    rollback: RollbackStack = field(default_factory=RollbackStack)
    spot_request_id: str | None = None
    instance_id: str | None = None
    public_ip: str | None = None
    spot_price: float | None = None
    failed_from: SessionState | None = None
    history: list[SessionState] = field(default_factory=list)
    auto_bid: bool = False
    estimated_cost: float = 0.0
    phase_seconds: dict[str, float] = field(default_factory=dict)

    def transition(self, target: SessionState) -> None:
        """Move to ``target``.

        Raises
        ------
        RuntimeError
            If the transition is not in the allowed table
        """
        if target not in ALLOWED_TRANSITIONS[self.state]:
            raise RuntimeError(
                f"Illegal session transition {self.state.value} -> {target.value}"
            )

        if target == SessionState.FAILED:
            self.failed_from = self.state

        logger.debug("Session %s: %s -> %s", self.session_id, self.state.value, target.value)
        self.history.append(self.state)
        self.state = target

    @property
    def is_terminal(self) -> bool:
        return self.state == SessionState.DONE

    @property
    def resource_ids(self) -> dict[str, str]:
        ids = {}
        if self.spot_request_id:
            ids["spot_request_id"] = self.spot_request_id
        if self.instance_id:
            ids["instance_id"] = self.instance_id
        return ids
