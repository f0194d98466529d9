from cinegen.events import ConfigEventBus


def test_publish_calls_listeners_in_order():
    bus = ConfigEventBus()
    calls = []
    bus.subscribe(lambda: calls.append("a"))
    bus.subscribe(lambda: calls.append("b"))
    bus.publish()
    assert calls == ["a", "b"]


def test_throwing_listener_does_not_stop_others():
    bus = ConfigEventBus()
    calls = []

    def boom():
        raise RuntimeError("listener failed")

    bus.subscribe(lambda: calls.append(1))
    bus.subscribe(boom)
    bus.subscribe(lambda: calls.append(3))
    bus.publish()
    assert calls == [1, 3]


def test_unsubscribe_removes_only_that_registration_and_is_idempotent():
    bus = ConfigEventBus()
    calls = []

    def listener():
        calls.append("x")

    unsubscribe_first = bus.subscribe(listener)
    bus.subscribe(listener)
    unsubscribe_first()
    unsubscribe_first()
    bus.publish()
    assert calls == ["x"]
    assert len(bus) == 1


def test_unsubscribe_during_publish_keeps_current_pass():
    bus = ConfigEventBus()
    calls = []
    handles = {}

    def first():
        calls.append("first")
        handles["second"]()

    def second():
        calls.append("second")

    bus.subscribe(first)
    handles["second"] = bus.subscribe(second)
    bus.publish()
    assert calls == ["first", "second"]

    calls.clear()
    bus.publish()
    assert calls == ["first"]


def test_clear_removes_all_listeners():
    bus = ConfigEventBus()
    calls = []
    bus.subscribe(lambda: calls.append(1))
    bus.clear()
    bus.publish()
    assert calls == []
    assert len(bus) == 0
