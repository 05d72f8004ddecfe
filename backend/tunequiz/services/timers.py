import logging
import threading


class TimerHandle:
    """Cancellable token for one scheduled callback.

    A handle fires at most once and never after it was cancelled. Cancelling
    a handle that already fired is a no-op.
    """

    def __init__(self, delay, callback, args):
        self.delay = delay
        self.callback = callback
        self.args = args
        self.cancelled = False
        self.fired = False

    @property
    def active(self) -> bool:
        return not (self.cancelled or self.fired)

    def cancel(self) -> bool:
        if not self.active:
            return False
        self.cancelled = True
        return True

    def fire(self) -> None:
        if not self.active:
            return
        self.fired = True
        self.callback(*self.args)


class BackgroundTimers:
    """Runs each timer as a Socket.IO background task.

    The callback runs while holding ``lock``, the same lock every socket
    handler holds, so timer callbacks and inbound events never interleave.
    Tasks sleep in ``poll_interval`` slices and exit early once cancelled.
    """

    def __init__(self, socketio, logger=None, poll_interval=1.0):
        self.socketio = socketio
        self.lock = threading.RLock()
        self.logger = logger or logging.getLogger(__name__)
        self.poll_interval = poll_interval

    def call_later(self, delay, callback, *args) -> TimerHandle:
        handle = TimerHandle(delay, callback, args)
        self.socketio.start_background_task(self._run, handle)
        return handle

    def _run(self, handle: TimerHandle) -> None:
        remaining = max(0.0, handle.delay)
        while remaining > 0:
            if not handle.active:
                return
            step = min(self.poll_interval, remaining) if self.poll_interval > 0 else remaining
            self.socketio.sleep(step)
            remaining -= step
        with self.lock:
            try:
                handle.fire()
            except Exception:
                self.logger.exception(f"[timer-error] callback={getattr(handle.callback, '__name__', handle.callback)}")
