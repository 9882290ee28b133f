from vatbake.observable import Observable


def test_add_and_notify_in_order():
    obs = Observable()
    seen = []
    obs.add(lambda e: seen.append(("a", e)))
    obs.add(lambda e: seen.append(("b", e)))
    obs.notify(1)
    assert seen == [("a", 1), ("b", 1)]


def test_add_once_fires_once():
    obs = Observable()
    seen = []
    sub = obs.add_once(seen.append)
    obs.notify(1)
    obs.notify(2)
    assert seen == [1]
    assert not sub.active
    assert len(obs) == 0


def test_remove_is_idempotent():
    obs = Observable()
    sub = obs.add(lambda e: None)
    sub.remove()
    sub.remove()
    assert not obs.has_observers()


def test_remove_during_notify_skips_removed_observer():
    obs = Observable()
    seen = []
    second = None

    def first(e):
        seen.append("first")
        second.remove()

    obs.add(first)
    second = obs.add(lambda e: seen.append("second"))
    obs.notify()
    assert seen == ["first"]


def test_clear_detaches_everything():
    obs = Observable()
    subs = [obs.add(lambda e: None) for _ in range(3)]
    obs.clear()
    assert len(obs) == 0
    assert all(not s.active for s in subs)
