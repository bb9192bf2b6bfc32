from __future__ import annotations

from dataclasses import dataclass

from statemachine import State, StateMachine

from rce_bridge.api.models import ServerStatus, Session


def lifecycle_value_for(status: ServerStatus) -> str:
    """Collapse the portal's service states into down / running / suspended."""

    if status == ServerStatus.running:
        return "running"
    if status == ServerStatus.suspended:
        return "suspended"
    return "down"


@dataclass(frozen=True, slots=True)
class LifecycleChange:
    """Result of applying a service-status change.

    - `changed`: the coarse lifecycle state moved.
    - `entered_running`: the server just became able to take commands.
    """

    previous: str
    current: str

    @property
    def changed(self) -> bool:
        return self.previous != self.current

    @property
    def entered_running(self) -> bool:
        return self.changed and self.current == "running"


class ServerLifecycle(StateMachine):
    """FSM guarding a session's coarse lifecycle.

    The raw portal status is still stored on the session; the machine only
    tracks whether commands can be sent.
    """

    down = State("down", value="down", initial=True)
    running = State("running", value="running")
    suspended = State("suspended", value="suspended")

    came_up = down.to(running) | suspended.to(running)
    went_down = running.to(down) | suspended.to(down)
    suspend = down.to(suspended) | running.to(suspended)

    def __init__(self, session: Session):
        self.session = session
        super().__init__(start_value=lifecycle_value_for(session.status))


_EVENT_FOR_TARGET = {
    "running": "came_up",
    "down": "went_down",
    "suspended": "suspend",
}


def apply_status(*, session: Session, status: ServerStatus) -> LifecycleChange:
    """Move `session` to `status`, mutating it in place."""

    fsm = ServerLifecycle(session)
    previous = str(fsm.current_state.value)
    target = lifecycle_value_for(status)
    if target != previous:
        fsm.send(_EVENT_FOR_TARGET[target])
    session.status = status
    return LifecycleChange(previous=previous, current=str(fsm.current_state.value))
