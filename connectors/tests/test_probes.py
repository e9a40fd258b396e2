import subprocess

import httpx
import pytest

from conftest import Sleeps
from connectors import probes
from connectors.probes import ProbeResult, ReadinessCheck, command_check, http_check, probe


def _client(statuses):
    """httpx client answering with the given status codes in order (None = connection refused)."""
    answers = iter(statuses)
    seen = []

    def handler(request):
        seen.append(str(request.url))
        status = next(answers)
        if status is None:
            raise httpx.ConnectError("refused", request=request)
        return httpx.Response(status)

    return httpx.Client(transport=httpx.MockTransport(handler)), seen


def test_ready_on_first_attempt_does_not_sleep():
    sleeps = Sleeps()
    client, seen = _client([200])
    result = probe(http_check("http://localhost:10350", max_attempts=5), sleep=sleeps, client=client)
    assert result is ProbeResult.READY
    assert result
    assert sleeps == []
    assert len(seen) == 1


def test_ready_after_retries():
    sleeps = Sleeps()
    client, seen = _client([None, 503, 200])
    check = http_check("http://localhost:10350", interval=2, max_attempts=5)
    assert probe(check, sleep=sleeps, client=client) is ProbeResult.READY
    assert sleeps == [2, 2]


def test_timeout_uses_exactly_max_attempts():
    sleeps = Sleeps()
    client, seen = _client([None] * 3)
    result = probe(http_check("http://localhost:10350", interval=0.5, max_attempts=3), sleep=sleeps, client=client)
    assert result is ProbeResult.TIMEOUT
    assert not result
    assert len(seen) == 3
    assert sleeps == [0.5, 0.5]


def test_single_attempt_never_sleeps():
    sleeps = Sleeps()
    assert probe(http_check("http://localhost:5000/v2/"), sleep=sleeps, client=_client([None])[0]) is ProbeResult.TIMEOUT
    assert sleeps == []


@pytest.mark.parametrize("status,ready", [(200, True), (401, True), (302, False), (500, False)])
def test_ready_status_set(status, ready):
    check = http_check("http://localhost:5000/v2/", ready_status=[200, 401])
    assert bool(probe(check, sleep=Sleeps(), client=_client([status])[0])) is ready


def test_redirect_is_not_followed():
    check = http_check("http://localhost:10350", ready_status=[200, 302])
    client, seen = _client([302])
    assert probe(check, sleep=Sleeps(), client=client) is ProbeResult.READY
    assert len(seen) == 1


def test_command_check_uses_exit_code(monkeypatch):
    codes = iter([1, 0])
    calls = []

    def fake_run(cmd, **kwargs):
        calls.append(cmd)
        return subprocess.CompletedProcess(cmd, next(codes))

    monkeypatch.setattr(probes.subprocess, "run", fake_run)
    sleeps = Sleeps()
    assert probe(command_check(["kubectl", "cluster-info"], max_attempts=2), sleep=sleeps) is ProbeResult.READY
    assert calls == [["kubectl", "cluster-info"]] * 2
    assert sleeps == [1.0]


def test_command_check_missing_binary_is_not_ready(monkeypatch):
    def fake_run(cmd, **kwargs):
        raise FileNotFoundError(cmd[0])

    monkeypatch.setattr(probes.subprocess, "run", fake_run)
    assert probe(command_check(["kubectl", "cluster-info"]), sleep=Sleeps()) is ProbeResult.TIMEOUT


def test_command_check_hanging_is_not_ready(monkeypatch):
    def fake_run(cmd, **kwargs):
        raise subprocess.TimeoutExpired(cmd, kwargs.get("timeout"))

    monkeypatch.setattr(probes.subprocess, "run", fake_run)
    assert probe(command_check(["kubectl", "cluster-info"], timeout=1), sleep=Sleeps()) is ProbeResult.TIMEOUT


@pytest.mark.parametrize("kwargs", [
    {},
    {"url": "http://x", "command": ("true",)},
    {"url": "http://x", "max_attempts": 0},
    {"url": "http://x", "interval": -1},
])
def test_invalid_checks_are_rejected(kwargs):
    with pytest.raises(ValueError):
        ReadinessCheck(**kwargs)


def test_target_names_what_is_polled():
    assert http_check("http://localhost:10350").target == "http://localhost:10350"
    assert command_check(["kubectl", "cluster-info"]).target == "kubectl cluster-info"
