from rate_limit import Cooldown


def test_cooldown_window(clock):
    cooldown = Cooldown(clock=clock)
    assert not cooldown.active()
    assert cooldown.remaining_seconds() == 0

    cooldown.start(12)
    assert cooldown.active()
    assert cooldown.remaining_seconds() == 12

    clock.advance(4.5)
    assert cooldown.remaining_seconds() == 8

    clock.advance(7.5)
    assert not cooldown.active()
    assert cooldown.remaining_seconds() == 0


def test_cooldown_has_a_floor_of_one_second(clock):
    cooldown = Cooldown(clock=clock)
    cooldown.start(0)
    assert cooldown.active()
    assert cooldown.remaining_seconds() == 1


def test_restart_replaces_window(clock):
    cooldown = Cooldown(clock=clock)
    cooldown.start(30)
    cooldown.start(5)
    assert cooldown.remaining_seconds() == 5
