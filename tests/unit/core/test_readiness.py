"""Unit tests for the readiness gate."""

from unittest.mock import MagicMock, patch

import pytest

from electrsd.adapters.electrum.protocol import ProtocolError
from electrsd.core.readiness import wait_ready
from electrsd.domain.config import Timeouts
from electrsd.domain.exceptions import ProcessDied, TimedOut
from electrsd.domain.value_objects import ReadinessState


class FakeHandle:
    """Just enough of DaemonHandle for the readiness gate."""

    def __init__(self, returncode=None, torn_down=False, tail=""):
        self.name = "electrs"
        self.returncode = returncode
        self.is_torn_down = torn_down
        self.tail = tail

    def read_log_tail(self) -> str:
        return self.tail


@pytest.fixture
def quick() -> Timeouts:
    return Timeouts(ready_deadline=5.0, ready_interval=0.01, ready_max_interval=0.02)


class TestWaitReady:
    """Tests for wait_ready()."""

    def test_returns_client_once_ping_succeeds(self, quick: Timeouts) -> None:
        """Test refused connections are retried until the client answers."""
        client = MagicMock()
        factory = MagicMock(side_effect=[ConnectionRefusedError(), ConnectionRefusedError(), client])

        assert wait_ready(FakeHandle(), factory, timeouts=quick) is client
        assert factory.call_count == 3
        client.ping.assert_called_once()
        client.close.assert_not_called()

    def test_client_errors_close_the_client(self, quick: Timeouts) -> None:
        """Test a client whose ping fails is closed before retrying."""
        broken = MagicMock()
        broken.ping.side_effect = ProtocolError("garbled")
        good = MagicMock()
        factory = MagicMock(side_effect=[broken, good])

        assert wait_ready(FakeHandle(), factory, timeouts=quick) is good
        broken.close.assert_called_once()

    def test_timed_out(self) -> None:
        """Test TimedOut carries elapsed time and attempt count."""
        timeouts = Timeouts(ready_deadline=0.2, ready_interval=0.02, ready_max_interval=0.05)
        factory = MagicMock(side_effect=TimeoutError("socket timed out"))

        with pytest.raises(TimedOut) as exc_info:
            wait_ready(FakeHandle(), factory, timeouts=timeouts)

        assert exc_info.value.attempts >= 2
        assert exc_info.value.elapsed >= 0.2
        assert "socket timed out" in str(exc_info.value)

    def test_explicit_deadline_overrides_timeouts(self, quick: Timeouts) -> None:
        """Test the deadline argument wins over timeouts.ready_deadline."""
        factory = MagicMock(side_effect=ConnectionRefusedError())
        with pytest.raises(TimedOut) as exc_info:
            wait_ready(FakeHandle(), factory, deadline=0.05, timeouts=quick)
        assert exc_info.value.elapsed < quick.ready_deadline

    def test_exited_process_fails_fast(self, quick: Timeouts) -> None:
        """Test an exited daemon raises ProcessDied with its output."""
        handle = FakeHandle(returncode=3, tail="Error: Unable to bind")
        factory = MagicMock()

        with pytest.raises(ProcessDied) as exc_info:
            wait_ready(handle, factory, timeouts=quick)

        factory.assert_not_called()
        assert exc_info.value.returncode == 3
        assert exc_info.value.output_tail == "Error: Unable to bind"
        assert "Unable to bind" in str(exc_info.value)

    def test_exit_during_polling(self, quick: Timeouts) -> None:
        """Test an exit noticed between attempts stops the wait."""
        handle = FakeHandle()

        def factory():
            handle.returncode = 1
            raise ConnectionRefusedError()

        with pytest.raises(ProcessDied) as exc_info:
            wait_ready(handle, factory, timeouts=quick)
        assert exc_info.value.returncode == 1

    def test_torn_down_handle(self, quick: Timeouts) -> None:
        """Test waiting on a torn down handle raises ProcessDied without a code."""
        with pytest.raises(ProcessDied, match="torn down") as exc_info:
            wait_ready(FakeHandle(torn_down=True), MagicMock(), timeouts=quick)
        assert exc_info.value.returncode is None

    def test_backoff_is_capped(self) -> None:
        """Test intervals grow by the backoff factor up to the cap."""
        timeouts = Timeouts(
            ready_deadline=60.0, ready_interval=0.01, ready_backoff=2.0, ready_max_interval=0.04
        )
        client = MagicMock()
        factory = MagicMock(side_effect=[OSError()] * 4 + [client])

        with patch("electrsd.core.readiness.time.sleep") as sleep:
            wait_ready(FakeHandle(), factory, timeouts=timeouts)

        delays = [call.args[0] for call in sleep.call_args_list]
        assert delays == pytest.approx([0.01, 0.02, 0.04, 0.04])

    def test_progress_snapshots(self, quick: Timeouts) -> None:
        """Test on_progress sees polling snapshots and then READY."""
        snapshots = []
        factory = MagicMock(side_effect=[OSError(), MagicMock()])

        wait_ready(FakeHandle(), factory, timeouts=quick, on_progress=snapshots.append)

        assert snapshots[0].state == ReadinessState.POLLING
        assert snapshots[0].attempts == 0
        assert snapshots[-1].state == ReadinessState.READY
        assert snapshots[-1].attempts == 2

    def test_unexpected_errors_propagate(self, quick: Timeouts) -> None:
        """Test errors other than connection or client errors are not swallowed."""
        factory = MagicMock(side_effect=KeyError("bug"))
        with pytest.raises(KeyError):
            wait_ready(FakeHandle(), factory, timeouts=quick)
