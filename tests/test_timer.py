from chosung.timer import CountdownTimer, ManualScheduler


def test_manual_scheduler_runs_callbacks_in_deadline_order():
    sch = ManualScheduler()
    fired = []
    sch.call_later(2.0, lambda: fired.append(("b", sch.now)))
    sch.call_later(0.5, lambda: fired.append(("a", sch.now)))
    sch.advance(1.0)
    assert fired == [("a", 0.5)]
    sch.advance(1.0)
    assert fired == [("a", 0.5), ("b", 2.0)]
    assert sch.now == 2.0


def test_manual_scheduler_skips_cancelled():
    sch = ManualScheduler()
    fired = []
    h = sch.call_later(1.0, lambda: fired.append(1))
    assert sch.pending == 1
    h.cancel()
    assert sch.pending == 0
    sch.advance(5)
    assert fired == []


def test_countdown_ticks_every_interval_until_disarmed():
    sch = ManualScheduler()
    ticks = []
    timer = CountdownTimer(sch, lambda: ticks.append(sch.now))
    timer.arm()
    sch.advance(3.5)
    assert ticks == [1.0, 2.0, 3.0]
    timer.disarm()
    assert not timer.armed
    sch.advance(5)
    assert len(ticks) == 3


def test_countdown_rearm_keeps_single_pending_tick():
    sch = ManualScheduler()
    timer = CountdownTimer(sch, lambda: None)
    timer.arm()
    timer.arm()
    timer.arm()
    assert sch.pending == 1


def test_tick_handler_may_disarm_itself():
    sch = ManualScheduler()
    ticks = []

    def on_tick():
        ticks.append(sch.now)
        if len(ticks) == 2:
            timer.disarm()

    timer = CountdownTimer(sch, on_tick)
    timer.arm()
    sch.advance(10)
    assert ticks == [1.0, 2.0]
    assert sch.pending == 0
