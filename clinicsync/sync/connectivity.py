"""
Connectivity monitor for the sync client.

Tracks a single reachable/unreachable flag and tells subscribers when it
flips. The platform feeds it either by calling ``observe`` from its own
network notifications or by letting the monitor poll a probe in a
background thread.
"""

import logging
import threading
from typing import Callable, List, Optional

logger = logging.getLogger(__name__)

Listener = Callable[[bool], None]


class ConnectivityMonitor:
    """
    Reachability state with transition notifications.

    Listeners are called synchronously, in subscription order, with the new
    value on every false -> true or true -> false change. Observing the
    current value again notifies nobody.
    Transitions are delivered one at a time, in the order they happened.
    """

    DEFAULT_CHECK_INTERVAL = 30.0  # seconds

    def __init__(
        self,
        probe: Callable[[], bool],
        check_interval: float = DEFAULT_CHECK_INTERVAL,
        initial: Optional[bool] = None
    ):
        """
        Initialize the monitor.

        Args:
            probe: Returns the platform's current reachability
            check_interval: Seconds between probes when polling
            initial: Starting state; taken from the probe if None
        """
        self._probe = probe
        self.check_interval = check_interval
        self._lock = threading.Lock()
        self._delivery_lock = threading.RLock()
        self._listeners: List[Listener] = []
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._online = self._run_probe() if initial is None else bool(initial)

    @property
    def is_online(self) -> bool:
        with self._lock:
            return self._online

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """
        Register a transition listener.

        Returns:
            A callable that removes the listener
        """
        with self._lock:
            self._listeners.append(listener)
        return lambda: self.unsubscribe(listener)

    def unsubscribe(self, listener: Listener) -> None:
        """Remove a listener; unknown listeners are ignored."""
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def observe(self, reachable: bool) -> bool:
        """
        Feed a reachability observation.

        Args:
            reachable: Whether the network is reachable right now

        Returns:
            True if this changed the state and listeners were notified
        """
        reachable = bool(reachable)
        # A transition is fully delivered before the next one is decided.
        with self._delivery_lock:
            with self._lock:
                if reachable == self._online:
                    return False
                self._online = reachable
                listeners = list(self._listeners)

            logger.info(f"Connectivity changed: {'online' if reachable else 'offline'}")
            for listener in listeners:
                try:
                    listener(reachable)
                except Exception as e:
                    logger.error(f"Error in connectivity listener: {e}")
            return True

    def _run_probe(self) -> bool:
        try:
            return bool(self._probe())
        except Exception as e:
            logger.debug(f"Reachability probe failed: {e}")
            return False

    def check_now(self) -> bool:
        """
        Probe once and observe the result.

        Returns:
            True if the state changed
        """
        return self.observe(self._run_probe())

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start polling the probe in a background thread."""
        if self.is_running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._poll_loop,
            name="ConnectivityMonitor",
            daemon=True
        )
        self._thread.start()
        logger.debug(f"Connectivity polling started (interval={self.check_interval}s)")

    def _poll_loop(self) -> None:
        while not self._stop_event.wait(self.check_interval):
            self.check_now()

    def stop(self, timeout: float = 5.0) -> None:
        """Stop the polling thread."""
        self._stop_event.set()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        self._thread = None
