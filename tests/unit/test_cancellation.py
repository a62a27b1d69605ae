from tributary.cancellation import CancellationToken


class TestCancellationToken:
    def test_starts_uncanceled(self):
        token = CancellationToken()
        assert not token.canceled
        assert token.reason is None

    def test_cancel_sets_reason_once(self):
        token = CancellationToken()
        token.cancel("first")
        token.cancel("second")
        assert token.canceled
        assert token.reason == "first"

    def test_subscribers_called_in_order(self):
        token = CancellationToken()
        calls = []
        token.subscribe(lambda r: calls.append(("a", r)))
        token.subscribe(lambda r: calls.append(("b", r)))
        token.cancel("stop")
        token.cancel("again")
        assert calls == [("a", "stop"), ("b", "stop")]

    def test_subscribe_after_cancel_fires_immediately(self):
        token = CancellationToken()
        token.cancel("late")
        calls = []
        token.subscribe(calls.append)
        assert calls == ["late"]

    def test_unsubscribe(self):
        token = CancellationToken()
        calls = []
        unsubscribe = token.subscribe(calls.append)
        unsubscribe()
        token.cancel()
        assert calls == []


class TestLinkedToken:
    def test_parent_cancels_child(self):
        parent = CancellationToken()
        child = CancellationToken.linked(parent)
        parent.cancel("user")
        assert child.canceled
        assert child.reason == "user"

    def test_child_cancel_does_not_touch_parent(self):
        parent = CancellationToken()
        child = CancellationToken.linked(parent)
        child.cancel()
        assert child.canceled
        assert not parent.canceled

    def test_already_canceled_parent(self):
        parent = CancellationToken()
        parent.cancel()
        assert CancellationToken.linked(parent).canceled

    def test_no_parent(self):
        assert not CancellationToken.linked(None).canceled

    def test_detach_drops_parent_subscription(self):
        parent = CancellationToken()
        child = CancellationToken.linked(parent)
        assert len(parent._callbacks) == 1

        child.detach()
        parent.cancel()

        assert parent._callbacks == []
        assert not child.canceled

    def test_detach_twice_is_harmless(self):
        child = CancellationToken.linked(CancellationToken())
        child.detach()
        child.detach()
        assert not child.canceled
