import time

from wardgate.ratelimit import Limiter, Registry


def test_allow_within_limit():
    lim = Limiter(5, 60)
    assert all(lim.allow() for _ in range(5))


def test_deny_over_limit():
    lim = Limiter(3, 60)
    for _ in range(3):
        lim.allow()
    assert lim.allow() is False


def test_sliding_window():
    lim = Limiter(2, 0.05)
    lim.allow()
    lim.allow()
    assert lim.allow() is False
    time.sleep(0.06)
    assert lim.allow() is True


def test_count():
    lim = Limiter(10, 60)
    for _ in range(3):
        lim.allow()
    assert lim.count() == 3


def test_denied_requests_are_not_counted():
    lim = Limiter(2, 60)
    for _ in range(5):
        lim.allow()
    assert lim.count() == 2


def test_reset():
    lim = Limiter(2, 60)
    lim.allow()
    lim.allow()
    assert lim.allow() is False
    lim.reset()
    assert lim.allow() is True


def test_registry_get():
    reg = Registry(10, 60)
    lim1 = reg.get("agent-1")
    lim2 = reg.get("agent-1")
    lim3 = reg.get("agent-2")
    assert lim1 is lim2
    assert lim1 is not lim3


def test_registry_allow():
    reg = Registry(2, 60)
    assert reg.allow("agent-1") is True
    assert reg.allow("agent-1") is True
    assert reg.allow("agent-1") is False
    assert reg.allow("agent-2") is True