"""Tests for worker dispatchers."""

import threading
from unittest.mock import Mock, patch
from uuid import uuid4

import pytest

from eobflow.models import PageJobRef
from eobflow.pipeline import LocalDispatcher, ModalDispatcher


@pytest.fixture
def ref() -> PageJobRef:
    return PageJobRef(job_id=uuid4(), document_id=uuid4(), page_number=3, tenant_id=uuid4(), file_name="remit.pdf")


class TestLocalDispatcher:

    def test_submit_runs_handler_in_background(self, ref):
        handler = Mock(return_value={"status": "succeeded"})
        dispatcher = LocalDispatcher(handler, max_workers=2)

        assert dispatcher.submit(ref) is True
        assert dispatcher.wait() == [{"status": "succeeded"}]
        handler.assert_called_once_with(ref)
        dispatcher.close()

    def test_handler_exception_becomes_error_result(self, ref):
        dispatcher = LocalDispatcher(Mock(side_effect=RuntimeError("boom")))

        dispatcher.submit(ref)
        [result] = dispatcher.wait()

        assert result["status"] == "error"
        assert result["error"] == "boom"
        dispatcher.close()

    def test_run_is_synchronous_and_raises(self, ref):
        dispatcher = LocalDispatcher(Mock(side_effect=RuntimeError("boom")))

        with pytest.raises(RuntimeError):
            dispatcher.run(ref)
        dispatcher.close()

    def test_closed_dispatcher_refuses_work(self, ref):
        dispatcher = LocalDispatcher(Mock())
        dispatcher.close()

        assert dispatcher.submit(ref) is False


class TestModalDispatcher:

    def test_submit_spawns_with_json_payload(self, ref):
        function = Mock()
        with patch("modal.Function.from_name", return_value=function) as from_name:
            dispatcher = ModalDispatcher("eobflow")
            accepted = dispatcher.submit(ref)

        assert accepted is True
        from_name.assert_called_once_with("eobflow", "process_page_job")
        kwargs = function.spawn.call_args.kwargs
        assert kwargs["job_id"] == str(ref.job_id)
        assert kwargs["page_number"] == 3
        assert kwargs["file_name"] == "remit.pdf"
        dispatcher.close()

    def test_spawn_failure_is_not_accepted(self, ref):
        function = Mock()
        function.spawn.side_effect = ConnectionError("control plane unreachable")
        with patch("modal.Function.from_name", return_value=function):
            dispatcher = ModalDispatcher("eobflow")
            assert dispatcher.submit(ref) is False
        dispatcher.close()

    def test_slow_spawn_times_out(self, ref):
        release = threading.Event()
        function = Mock()
        function.spawn.side_effect = lambda **kwargs: release.wait(5)
        with patch("modal.Function.from_name", return_value=function):
            dispatcher = ModalDispatcher("eobflow", accept_timeout_sec=0.05)
            try:
                assert dispatcher.submit(ref) is False
            finally:
                release.set()
                dispatcher.close()

    def test_run_waits_for_remote_result(self, ref):
        function = Mock()
        function.remote.return_value = {"status": "succeeded"}
        with patch("modal.Function.from_name", return_value=function):
            dispatcher = ModalDispatcher("eobflow")
            assert dispatcher.run(ref) == {"status": "succeeded"}

        assert function.remote.call_args.kwargs["document_id"] == str(ref.document_id)
        dispatcher.close()
