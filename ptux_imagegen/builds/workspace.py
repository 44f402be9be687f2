"""Build workspace lifecycle.

A run owns two disposable resources, the templated bootstrap config and
the root directory the bootstrapper populates. This module creates them,
tracks the run state and tears everything down on every exit path:

    idle -> workspace_allocated -> stages_running
         -> succeeded | failed | interrupted -> torn_down

Teardown removes the workspace (except for helper invocations, whose
caller reuses it) and, unless the run succeeded, every output artifact
that exists, so a failed or interrupted run leaves nothing behind.
"""

from __future__ import annotations

import logging
import shutil
import signal
import tempfile
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from ptux_imagegen.builds.template import render_template
from ptux_imagegen.errors import BuildInterruptedError, StageIOError
from ptux_imagegen.types import InvocationMode, RunState

if TYPE_CHECKING:
    from ptux_imagegen.config import BuildConfig

logger = logging.getLogger(__name__)

INTERRUPT_SIGNALS = (signal.SIGINT, signal.SIGTERM)


@dataclass(frozen=True)
class BuildWorkspace:
    """Disposable per-run resources.

    Attributes:
        config_file: Templated bootstrap configuration.
        root_dir: Directory receiving the bootstrapped root filesystem.
    """

    config_file: Path
    root_dir: Path


def _remove_path(path: Path) -> None:
    """Remove a file or directory tree if it exists, logging failures."""
    try:
        if path.is_dir() and not path.is_symlink():
            shutil.rmtree(path)
        elif path.exists() or path.is_symlink():
            path.unlink()
        else:
            return
        logger.debug("Removed %s", path)
    except OSError as e:
        logger.error("Failed to remove %s: %s", path, e)


class BuildLifecycle:
    """State machine for one build run and its resources."""

    def __init__(
        self,
        config: BuildConfig,
        mode: InvocationMode = InvocationMode.STANDALONE,
        tmp_dir: Path | None = None,
    ) -> None:
        self.config = config
        self.mode = mode
        self.tmp_dir = tmp_dir
        self.state = RunState.IDLE
        self.workspace: BuildWorkspace | None = None

    def allocate(self) -> BuildWorkspace:
        """Create the root directory and the templated config.

        The state becomes workspace_allocated only once both exist; if the
        second resource cannot be created the first is removed again.

        Raises:
            StageIOError: If either resource cannot be created.
        """
        if self.state is not RunState.IDLE:
            raise RuntimeError(f"Cannot allocate workspace in state {self.state.value}")

        package = self.config.target_package
        try:
            root_dir = Path(
                tempfile.mkdtemp(prefix=f"ptux-{package}-root-", dir=self.tmp_dir)
            )
        except OSError as e:
            raise StageIOError(
                f"Failed to create working directory: {e}",
                code="workspace_error",
            ) from e

        try:
            config_file = render_template(
                self.config.bootstrap_template,
                package,
                self.config.distribution_codename,
                directory=self.tmp_dir,
            )
        except BaseException:
            _remove_path(root_dir)
            raise

        self.workspace = BuildWorkspace(config_file=config_file, root_dir=root_dir)
        self.state = RunState.WORKSPACE_ALLOCATED
        logger.info("Workspace allocated: root=%s config=%s", root_dir, config_file)
        return self.workspace

    def begin_stages(self) -> None:
        if self.state is not RunState.WORKSPACE_ALLOCATED:
            raise RuntimeError(f"Cannot run stages in state {self.state.value}")
        self.state = RunState.STAGES_RUNNING

    def mark_succeeded(self) -> None:
        if self.state is not RunState.STAGES_RUNNING:
            raise RuntimeError(f"Cannot succeed from state {self.state.value}")
        self.state = RunState.SUCCEEDED

    def mark_failed(self) -> None:
        if self.state in (RunState.WORKSPACE_ALLOCATED, RunState.STAGES_RUNNING):
            self.state = RunState.FAILED

    def mark_interrupted(self) -> None:
        if self.state in (RunState.WORKSPACE_ALLOCATED, RunState.STAGES_RUNNING):
            self.state = RunState.INTERRUPTED

    @property
    def active_workspace(self) -> BuildWorkspace:
        """The allocated workspace.

        Raises:
            RuntimeError: If no workspace has been allocated.
        """
        if self.workspace is None:
            raise RuntimeError(f"No workspace allocated in state {self.state.value}")
        return self.workspace

    @property
    def keeps_workspace(self) -> bool:
        return self.mode is InvocationMode.HELPER

    def teardown(self) -> None:
        """Release the run's resources. Safe to call more than once."""
        if self.state is RunState.TORN_DOWN:
            return

        if self.workspace is not None:
            if self.keeps_workspace:
                logger.info(
                    "Helper invocation, keeping workspace: root=%s config=%s",
                    self.workspace.root_dir,
                    self.workspace.config_file,
                )
            else:
                _remove_path(self.workspace.config_file)
                _remove_path(self.workspace.root_dir)

            if self.state is not RunState.SUCCEEDED:
                for path in self.config.output_paths:
                    if path.exists() or path.is_symlink():
                        logger.warning("Removing partial output %s", path)
                        _remove_path(path)

        logger.debug("Teardown complete (final state was %s)", self.state.value)
        self.state = RunState.TORN_DOWN


class _InterruptHandler:
    """Signal handler that raises, or records the signal while deferring."""

    def __init__(self) -> None:
        self.deferring = False
        self.pending: int | None = None

    def __call__(self, signum: int, _frame: object) -> None:
        if self.deferring:
            logger.warning(
                "Received %s during cleanup, finishing teardown first",
                signal.Signals(signum).name,
            )
            self.pending = signum
            return
        raise BuildInterruptedError(signum)


@contextmanager
def interruption_guard(
    signals: tuple[signal.Signals, ...] = INTERRUPT_SIGNALS,
) -> Iterator[_InterruptHandler]:
    """Turn termination signals into BuildInterruptedError.

    Setting ``deferring`` on the yielded handler makes it record the
    signal in ``pending`` instead of raising. Signal handlers can only be
    installed from the main thread; elsewhere nothing is installed.
    """
    handler = _InterruptHandler()
    if threading.current_thread() is not threading.main_thread():
        yield handler
        return

    previous = {sig: signal.signal(sig, handler) for sig in signals}
    try:
        yield handler
    finally:
        for sig, old in previous.items():
            signal.signal(sig, old)


@contextmanager
def _signals_blocked(
    signals: tuple[signal.Signals, ...] = INTERRUPT_SIGNALS,
) -> Iterator[None]:
    """Hold back termination signals until the block is done."""
    old_mask = signal.pthread_sigmask(signal.SIG_BLOCK, signals)
    try:
        yield
    finally:
        signal.pthread_sigmask(signal.SIG_SETMASK, old_mask)


@contextmanager
def build_workspace(
    config: BuildConfig,
    mode: InvocationMode = InvocationMode.STANDALONE,
    tmp_dir: Path | None = None,
) -> Iterator[BuildLifecycle]:
    """Allocate a workspace and guarantee its teardown.

    Yields a lifecycle in the stages_running state. Leaving the block
    normally marks the run succeeded; an exception marks it failed, or
    interrupted for BuildInterruptedError and KeyboardInterrupt.

    Allocation runs with termination signals held back, so the workspace
    is either fully recorded or not created. From the moment the block is
    left, signals are only recorded and logged, so they cannot cut
    teardown short; teardown itself runs with them held back.

    Args:
        config: Resolved build configuration.
        mode: Invocation mode; helper keeps the workspace.
        tmp_dir: Parent directory for the workspace (system default if None).

    Yields:
        The run's BuildLifecycle.
    """
    lifecycle = BuildLifecycle(config, mode=mode, tmp_dir=tmp_dir)
    with interruption_guard() as handler:
        try:
            with _signals_blocked():
                lifecycle.allocate()
                lifecycle.begin_stages()
            yield lifecycle
        except (BuildInterruptedError, KeyboardInterrupt):
            handler.deferring = True
            lifecycle.mark_interrupted()
            logger.error("Build interrupted, cleaning up")
            _teardown(lifecycle)
            raise
        except BaseException:
            handler.deferring = True
            lifecycle.mark_failed()
            _teardown(lifecycle)
            raise
        else:
            handler.deferring = True
            lifecycle.mark_succeeded()
            _teardown(lifecycle)


def _teardown(lifecycle: BuildLifecycle) -> None:
    with _signals_blocked():
        lifecycle.teardown()


__all__ = [
    "BuildLifecycle",
    "BuildWorkspace",
    "build_workspace",
    "interruption_guard",
]
