from bridgekeeper.replay import DEFAULT_TTL_SECONDS, OtpReplayGuard


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def test_code_is_accepted_once_then_rejected():
    guard = OtpReplayGuard()
    assert guard.consume("admin", "123456") is True
    assert guard.consume("admin", "123456") is False


def test_same_code_for_another_user_is_independent():
    guard = OtpReplayGuard()
    assert guard.consume("admin", "123456") is True
    assert guard.consume("bob", "123456") is True


def test_seen_does_not_consume():
    guard = OtpReplayGuard()
    assert guard.seen("admin", "111111") is False
    assert guard.seen("admin", "111111") is False
    assert guard.consume("admin", "111111") is True
    assert guard.seen("admin", "111111") is True


def test_entries_expire_after_ttl():
    clock = FakeClock()
    guard = OtpReplayGuard(clock=clock)
    assert DEFAULT_TTL_SECONDS == 90
    guard.consume("admin", "123456")

    clock.now += 89
    assert guard.consume("admin", "123456") is False

    clock.now += 2
    assert len(guard) == 0
    assert guard.consume("admin", "123456") is True


def test_clear_forgets_everything():
    guard = OtpReplayGuard()
    guard.consume("admin", "123456")
    guard.clear()
    assert guard.consume("admin", "123456") is True
