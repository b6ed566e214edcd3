"""Tests for notifications to monitoring endpoints."""

from relayci.collaborators import CallResult, Notifier


class TestNotifier:
    def test_emits_event_to_every_url(self):
        sent = []

        def fake_call(url, body, timeout):
            sent.append((url, body, timeout))
            return CallResult(ok=True, status=200)

        results = Notifier(["https://a.invalid", "https://b.invalid"], timeout=3, call=fake_call).emit(
            "run_completed", {"run_id": "r1", "status": "succeeded"}
        )
        assert [r.ok for r in results] == [True, True]
        assert sent[0] == ("https://a.invalid", {"event": "run_completed", "run_id": "r1", "status": "succeeded"}, 3)
        assert sent[1][0] == "https://b.invalid"

    def test_delivery_failures_are_reported_not_raised(self, caplog):
        def fake_call(url, body, timeout):
            if "slow" in url:
                raise TimeoutError()
            return CallResult(ok=False, detail="HTTP 500 Internal Server Error", status=500)

        results = Notifier(["https://slow.invalid", "https://down.invalid"], call=fake_call).emit("job_failed", {})
        assert results[0] == CallResult(ok=False, detail="timed out")
        assert results[1].status == 500
        assert "notification job_failed to https://down.invalid failed" in caplog.text
