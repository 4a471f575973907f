import random

from nookat.bootstrap.events import (
    Configure,
    Install,
    PhaseCompleted,
    PhaseErrored,
    PhaseLogged,
    PhaseProgressed,
    Retry,
    StartVm,
)
from nookat.bootstrap.machine import BootstrapStateMachine
from nookat.bootstrap.state import TRANSITIONS, BootstrapState as S
from nookat.engine.errors import CHECKSUM_FAILED_MESSAGE
from nookat.engine.models import EngineInfo, InstallationMethod, VmResourceConfig
from nookat.observers.dispatcher import EventBus
from nookat.observers.events import CommandRejected, NotificationDropped, StateChanged

from conftest import Capture

BREW = InstallationMethod.PACKAGE_MANAGER
BINARY = InstallationMethod.DIRECT_BINARY


class Feed:
    """Builds notifications for the machine's current attempt with increasing seq."""

    def __init__(self, m: BootstrapStateMachine):
        self.m = m
        self.seq = 0

    def _next(self):
        self.seq += 1
        return self.seq

    def _attempt(self, attempt):
        return self.m.attempt if attempt is None else attempt

    def progress(self, phase, pct, step="step", message="msg", attempt=None):
        return PhaseProgressed(phase=phase, attempt=self._attempt(attempt), seq=self._next(),
                               step=step, message=message, percentage=pct)

    def logged(self, phase, offset, *lines, attempt=None):
        return PhaseLogged(phase=phase, attempt=self._attempt(attempt), seq=self._next(),
                           offset=offset, lines=tuple(lines))

    def completed(self, phase, info=None, attempt=None):
        return PhaseCompleted(phase=phase, attempt=self._attempt(attempt), seq=self._next(), info=info)

    def errored(self, phase, error, attempt=None):
        return PhaseErrored(phase=phase, attempt=self._attempt(attempt), seq=self._next(), error=error)


def _machine():
    cap = Capture()
    m = BootstrapStateMachine(bus=EventBus([cap]))
    return m, Feed(m), cap


def test_happy_path_walks_every_phase_in_order():
    m, f, cap = _machine()
    assert m.dispatch(Install(BREW)) is S.INSTALLING
    assert m.dispatch(f.completed("installation")) is S.STARTING_VM
    assert m.dispatch(f.completed("vm-startup")) is S.VALIDATING
    info = EngineInfo(ServerVersion="27.3.1")
    assert m.dispatch(f.completed("validation", info=info)) is S.COMPLETE

    assert [(e.previous, e.current) for e in cap.of(StateChanged)] == [
        ("idle", "installing"),
        ("installing", "starting-vm"),
        ("starting-vm", "validating"),
        ("validating", "complete"),
    ]
    assert m.progress.percentage == 100
    assert m.progress.message == "Engine Ready!"
    assert m.engine_info.server_version == "27.3.1"
    assert m.method is BREW


def test_each_transition_resets_percentage_and_appends_info_line():
    m, f, _ = _machine()
    m.dispatch(Install(BREW))
    m.dispatch(f.progress("installation", 80))
    assert m.progress.percentage == 80

    before = len(m.progress.logs)
    m.dispatch(f.completed("installation"))
    assert m.progress.percentage == 0
    assert m.progress.logs[before:] == [
        "[INFO] Colima installation completed successfully",
        "[INFO] Starting Colima engine...",
    ]


def test_install_rejected_unless_idle_and_has_no_effect():
    m, f, cap = _machine()
    m.dispatch(Install(BREW))
    m.dispatch(f.logged("installation", 0, "brew install colima"))
    before = m.snapshot()

    assert m.dispatch(Install(BINARY)) is S.INSTALLING
    after = m.snapshot()
    assert after.progress == before.progress
    assert after.method is BREW
    assert after.attempt == before.attempt
    rej = cap.of(CommandRejected)
    assert rej and rej[-1].command == "Install" and rej[-1].state == "installing"


def test_start_vm_accepted_from_idle_and_rejected_while_installing():
    cfg = VmResourceConfig(cpu_cores=4, memory_gb=8, disk_gb=60, architecture="x86_64")

    m, _, _ = _machine()
    assert m.dispatch(StartVm(cfg)) is S.STARTING_VM
    assert m.config == cfg

    m2, _, cap = _machine()
    m2.dispatch(Install(BREW))
    assert m2.dispatch(StartVm(cfg)) is S.INSTALLING
    assert m2.config == VmResourceConfig()
    assert cap.of(CommandRejected)[-1].command == "StartVm"


def test_incomplete_config_is_rejected_locally():
    incomplete = VmResourceConfig.model_construct(cpu_cores=0, memory_gb=2, disk_gb=100, architecture="auto")
    m, _, cap = _machine()
    assert m.dispatch(StartVm(incomplete)) is S.IDLE
    assert "incomplete" in cap.of(CommandRejected)[-1].reason


def test_configure_locked_while_busy():
    m, f, _ = _machine()
    cfg = VmResourceConfig(cpu_cores=6)
    m.dispatch(Configure(cfg))
    assert m.config.cpu_cores == 6

    m.dispatch(Install(BREW))
    m.dispatch(Configure(VmResourceConfig(cpu_cores=1)))
    assert m.config.cpu_cores == 6
    assert not m.snapshot().config_editable

    m.dispatch(f.errored("installation", "boom"))
    assert m.snapshot().config_editable
    m.dispatch(Configure(VmResourceConfig(cpu_cores=1)))
    assert m.config.cpu_cores == 1


def test_error_stores_message_verbatim_and_logs_it():
    m, f, _ = _machine()
    m.dispatch(Install(BINARY))
    m.dispatch(f.errored("installation", CHECKSUM_FAILED_MESSAGE))
    assert m.state is S.ERROR
    assert m.error == CHECKSUM_FAILED_MESSAGE
    assert "corrupted" in m.error
    assert m.progress.logs[-1] == f"[ERROR] {CHECKSUM_FAILED_MESSAGE}"


def test_validation_error_routes_to_error():
    m, f, _ = _machine()
    m.dispatch(Install(BREW))
    m.dispatch(f.completed("installation"))
    m.dispatch(f.completed("vm-startup"))
    assert m.dispatch(f.errored("validation", "Cannot connect to Docker daemon")) is S.ERROR


def test_retry_after_error_restores_idle_and_clears_logs():
    m, f, _ = _machine()
    m.dispatch(Configure(VmResourceConfig(memory_gb=8)))
    m.dispatch(Install(BREW))
    m.dispatch(f.logged("installation", 0, "a", "b"))
    m.dispatch(f.errored("installation", "Failed to install colima: nope"))

    assert m.dispatch(Retry()) is S.IDLE
    assert m.progress.logs == []
    assert m.progress.percentage == 0
    assert m.error is None
    assert m.snapshot().config_editable
    assert m.config.memory_gb == 8

    m.dispatch(Configure(VmResourceConfig(memory_gb=4)))
    assert m.config.memory_gb == 4


def test_retry_after_complete_and_rejected_while_busy():
    m, f, _ = _machine()
    m.dispatch(Install(BREW))
    assert m.dispatch(Retry()) is S.INSTALLING

    m.dispatch(f.completed("installation"))
    m.dispatch(f.completed("vm-startup"))
    m.dispatch(f.completed("validation"))
    assert m.dispatch(Retry()) is S.IDLE


def test_log_lines_are_deduplicated_by_offset():
    m, f, _ = _machine()
    m.dispatch(Install(BREW))
    base = len(m.progress.logs)

    m.dispatch(f.logged("installation", 0, "one", "two"))
    m.dispatch(f.logged("installation", 1, "two", "three"))
    m.dispatch(f.logged("installation", 0, "one"))

    assert m.progress.logs[base:] == ["one", "two", "three"]


def test_repeated_log_text_is_kept():
    m, f, _ = _machine()
    m.dispatch(Install(BREW))
    base = len(m.progress.logs)
    m.dispatch(f.logged("installation", 0, "==> Pouring", "==> Pouring"))
    assert m.progress.logs[base:] == ["==> Pouring", "==> Pouring"]


def test_stale_duplicate_and_foreign_phase_notifications_are_dropped():
    m, f, cap = _machine()
    m.dispatch(Install(BREW))

    # vm-startup complete while installing must not skip a phase
    assert m.dispatch(f.completed("vm-startup")) is S.INSTALLING
    assert m.dispatch(f.completed("validation")) is S.INSTALLING

    p = f.progress("installation", 40)
    m.dispatch(p)
    m.dispatch(p)
    assert m.dispatch(f.completed("installation", attempt=m.attempt + 7)) is S.INSTALLING

    reasons = [e.reason for e in cap.of(NotificationDropped)]
    assert reasons == ["inactive phase", "inactive phase", "duplicate or out of order", "stale attempt"]


def test_notifications_from_a_previous_attempt_are_ignored_after_retry():
    m, f, _ = _machine()
    m.dispatch(Install(BREW))
    old = m.attempt
    m.dispatch(f.errored("installation", "first failure"))
    m.dispatch(Retry())
    m.dispatch(Install(BREW))

    assert m.dispatch(f.completed("installation", attempt=old)) is S.INSTALLING
    assert m.dispatch(f.errored("installation", "late", attempt=old)) is S.INSTALLING


def test_progress_percentage_is_clamped():
    m, f, _ = _machine()
    m.dispatch(Install(BREW))
    m.dispatch(f.progress("installation", 140))
    assert m.progress.percentage == 100
    m.dispatch(f.progress("installation", -5))
    assert m.progress.percentage == 0


def test_subscribers_receive_snapshots_and_can_unsubscribe():
    m, f, _ = _machine()
    seen = []
    unsubscribe = m.subscribe(lambda snap: seen.append(snap.state))
    m.dispatch(Install(BREW))
    m.dispatch(f.completed("installation"))
    unsubscribe()
    m.dispatch(f.completed("vm-startup"))
    assert seen == [S.INSTALLING, S.STARTING_VM]


def test_failing_subscriber_does_not_break_dispatch():
    m, _, _ = _machine()

    def bad(_snap):
        raise RuntimeError("renderer crashed")

    m.subscribe(bad)
    assert m.dispatch(Install(BREW)) is S.INSTALLING


def test_random_event_sequences_only_follow_the_transition_table():
    rng = random.Random(1234)
    phases = ["installation", "vm-startup", "validation"]
    cfg = VmResourceConfig(cpu_cores=4, memory_gb=8, disk_gb=60, architecture="x86_64")

    for _ in range(200):
        m, f, cap = _machine()
        prev_len = 0
        for _ in range(40):
            roll = rng.random()
            if roll < 0.1:
                ev = Install(rng.choice([BREW, BINARY]))
            elif roll < 0.15:
                ev = StartVm(cfg)
            elif roll < 0.25:
                ev = Retry()
            else:
                phase = rng.choice(phases)
                attempt = m.attempt if rng.random() < 0.8 else max(0, m.attempt - 1)
                kind = rng.choice(["progress", "log", "complete", "error"])
                if kind == "progress":
                    ev = f.progress(phase, rng.randint(-20, 150), attempt=attempt)
                elif kind == "log":
                    ev = f.logged(phase, rng.randint(0, 5), "x", "y", attempt=attempt)
                elif kind == "complete":
                    ev = f.completed(phase, attempt=attempt)
                else:
                    ev = f.errored(phase, "failed", attempt=attempt)
                if rng.random() < 0.1:
                    f.seq -= 2   # occasional out-of-order delivery

            m.dispatch(ev)
            assert m.state in set(S)
            assert 0 <= m.progress.percentage <= 100
            if isinstance(ev, Retry) and m.state is S.IDLE and not m.progress.logs:
                prev_len = 0
            assert len(m.progress.logs) >= prev_len
            prev_len = len(m.progress.logs)

        for e in cap.of(StateChanged):
            assert S(e.current) in TRANSITIONS[S(e.previous)]
