"""Tests for multi-candidate session construction."""
import logging
import shutil
from unittest.mock import MagicMock

import pytest

from fakes import ROOT_ID, FakeShellFactory
from sushell.builder import ShellBuilder
from sushell.datastructures import ShellFlag, ShellStatus
from sushell.errors import NoShellError, NotAShellError, PidParseError, SpawnError
from sushell.process import ShellFactory, default_factories


class TestShellBuilder:
    """Fallback loop, initializer veto and the exception handler."""

    def setup_method(self):
        self.handler = MagicMock()
        self.context = object()

    def _builder(self, *factories, **kwargs):
        kwargs.setdefault('timeout', 5)
        return ShellBuilder(*factories, exception_handler=self.handler,
                            context=self.context, **kwargs)

    def test_first_viable_factory_wins(self):
        """Test that the first working candidate is returned."""
        a = FakeShellFactory(["su"], identity=ROOT_ID)
        b = FakeShellFactory(["sh"])

        session = self._builder(a, b).build()
        try:
            assert session.factory is a
            assert session.status is ShellStatus.ROOT
            assert b.spawned == []
            self.handler.assert_not_called()
        finally:
            session.close()

    def test_falls_back_after_handshake_failure(self):
        """Test falling back after a candidate fails its handshake."""
        a = FakeShellFactory(["su"], responses={"echo SHELL_TEST": b"denied\n"})
        b = FakeShellFactory(["sh"])

        session = self._builder(a, b).build()
        try:
            assert session.factory is b
            assert session.status is ShellStatus.NON_ROOT
            self.handler.assert_called_once()
            factory, error = self.handler.call_args[0]
            assert factory is a
            assert isinstance(error, NotAShellError)
            assert a.spawned[0].killed
        finally:
            session.close()

    def test_falls_back_after_spawn_failure(self):
        """Test falling back after a candidate fails to spawn."""
        a = ShellFactory(["/nonexistent/sushell-test-binary"])
        b = FakeShellFactory(["sh"])

        session = self._builder(a, b).build()
        try:
            assert session.factory is b
            factory, error = self.handler.call_args[0]
            assert factory is a
            assert isinstance(error, SpawnError)
        finally:
            session.close()

    def test_initializers_run_in_order_with_context(self):
        """Test that initializers run in order with the builder context."""
        calls = []

        def first(context, session):
            calls.append(("first", context, session.status))
            return True

        def second(context, session):
            calls.append(("second", context, session.status))
            return True

        factory = FakeShellFactory(["sh"], initializers=[first, second])
        session = self._builder(factory).build()
        try:
            assert calls == [
                ("first", self.context, ShellStatus.NON_ROOT),
                ("second", self.context, ShellStatus.NON_ROOT),
            ]
        finally:
            session.close()

    def test_rejected_candidate_is_closed_and_skipped(self):
        """Test that a vetoed candidate is closed and skipped."""
        rejected = []

        def veto(context, session):
            rejected.append(session)
            return False

        never_called = MagicMock(return_value=True)
        a = FakeShellFactory(["su"], identity=ROOT_ID, initializers=[veto, never_called])
        b = FakeShellFactory(["sh"])

        session = self._builder(a, b).build()
        try:
            assert session.factory is b
            never_called.assert_not_called()
            assert rejected[0].status is ShellStatus.UNKNOWN
            assert a.spawned[0].killed
            self.handler.assert_not_called()
        finally:
            session.close()

    def test_initializer_error_is_reported(self):
        """Test that a raising initializer is reported and skipped."""
        def broken(context, session):
            raise RuntimeError("init failed")

        a = FakeShellFactory(["su"], initializers=[broken])
        b = FakeShellFactory(["sh"])

        session = self._builder(a, b).build()
        try:
            assert session.factory is b
            factory, error = self.handler.call_args[0]
            assert factory is a
            assert isinstance(error, RuntimeError)
            assert a.spawned[0].killed
        finally:
            session.close()

    def test_no_usable_shell(self):
        """Test NoShellError when every candidate fails."""
        a = FakeShellFactory(["su"], responses={"echo $$": b"bad\n"})
        b = FakeShellFactory(["sh"], initializers=[lambda context, session: False])

        with pytest.raises(NoShellError):
            self._builder(a, b).build()

        assert self.handler.call_count == 1
        assert isinstance(self.handler.call_args[0][1], PidParseError)
        assert b.spawned[0].killed

    def test_add_factory(self):
        """Test appending a candidate."""
        builder = self._builder()
        factory = FakeShellFactory(["sh"])
        assert builder.add_factory(factory) is builder
        session = builder.build()
        try:
            assert session.factory is factory
        finally:
            session.close()

    def test_default_handler_logs(self):
        """Test that failures are logged when no handler is given."""
        logger = MagicMock(spec=logging.Logger)
        logger.getChild.return_value = logger
        a = FakeShellFactory(["su"], responses={"echo SHELL_TEST": b"x\n"})
        b = FakeShellFactory(["sh"])

        session = ShellBuilder(a, b, timeout=5, logger=logger).build()
        try:
            assert session.factory is b
            assert logger.warning.called
        finally:
            session.close()

    def test_flags_reach_session(self):
        """Test that builder flags are passed to the session."""
        factory = FakeShellFactory(["sh"])
        session = self._builder(factory, flags=ShellFlag.MOUNT_MASTER).build()
        try:
            assert session.flags & ShellFlag.MOUNT_MASTER
        finally:
            session.close()

    def test_uses_default_candidates_without_factories(self):
        """Test the default candidates when none are configured."""
        builder = self._builder(flags=ShellFlag.NON_ROOT_SHELL)
        assert [f.commands for f in builder._candidates()] == [["sh"]]

    def test_build_explicit_commands_failure(self):
        """Test that explicit commands that fail raise NoShellError."""
        builder = self._builder(FakeShellFactory(["sh"]))
        with pytest.raises(NoShellError) as excinfo:
            builder.build("/nonexistent/sushell-test-binary")
        assert isinstance(excinfo.value.__cause__, SpawnError)
        self.handler.assert_not_called()

    @pytest.mark.skipif(shutil.which("sh") is None, reason="sh not available")
    def test_build_explicit_commands(self):
        """Test building from explicit commands."""
        session = self._builder().build("sh")
        try:
            assert session.commands == ["sh"]
            assert session.status in (ShellStatus.ROOT, ShellStatus.NON_ROOT)
            assert session.is_alive()
        finally:
            session.close()


class TestDefaultFactories:

    def test_su_then_sh(self):
        """Test the default su then sh order."""
        assert [f.commands for f in default_factories()] == [["su"], ["sh"]]

    def test_mount_master_first(self):
        """Test that MOUNT_MASTER puts su --mount-master first."""
        commands = [f.commands for f in default_factories(ShellFlag.MOUNT_MASTER)]
        assert commands == [["su", "--mount-master"], ["su"], ["sh"]]

    def test_non_root_only_sh(self):
        """Test that NON_ROOT_SHELL leaves only sh."""
        flags = ShellFlag.NON_ROOT_SHELL | ShellFlag.MOUNT_MASTER
        assert [f.commands for f in default_factories(flags)] == [["sh"]]

    def test_initializers_are_attached(self):
        """Test that initializers are attached to every candidate."""
        init = MagicMock(return_value=True)
        assert all(f.initializers == [init] for f in default_factories(initializers=[init]))

    def test_empty_command_rejected(self):
        """Test that an empty command vector is rejected."""
        with pytest.raises(ValueError):
            ShellFactory([])
