"""
Periodic iFood sync loop.

One daemon thread per process; ticks that would overlap a running one are
skipped rather than queued.
"""

import logging
import threading
from typing import Callable, Optional

from ifood_errors import IFoodError
from ifood_models import StateCell, clamp_polling_interval, utcnow
import sync_events

logger = logging.getLogger(__name__)


class SyncScheduler:
    """Background thread that polls events and order sets every interval"""

    def __init__(self, engine, token_manager, store, notifier, state_cell: StateCell,
                 interval_seconds: int = 30, events_polling: bool = True,
                 clock: Callable = utcnow):
        self.engine = engine
        self.token_manager = token_manager
        self.store = store
        self.notifier = notifier
        self.state_cell = state_cell
        self.interval = clamp_polling_interval(interval_seconds)
        self.events_polling = events_polling
        self._clock = clock
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._wake_event = threading.Event()
        self._tick_lock = threading.Lock()
        self._is_syncing = False

    def start(self):
        if self._thread and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, daemon=True, name='ifood-sync')
        self._thread.start()
        logger.info('iFood sync started (every %ss)', self.interval)

    def stop(self):
        self._stop_event.set()
        self._wake_event.set()
        if self._thread:
            self._thread.join(timeout=5)

    def set_interval(self, seconds) -> int:
        self.interval = clamp_polling_interval(seconds)
        self._wake_event.set()
        return self.interval

    def trigger(self):
        """Run a tick as soon as the loop is free."""
        self._wake_event.set()

    @property
    def is_running(self) -> bool:
        return bool(self._thread and self._thread.is_alive())

    @property
    def is_syncing(self) -> bool:
        return self._is_syncing

    def _run(self):
        while not self._stop_event.is_set():
            self.run_once()
            self._wake_event.wait(self.interval)
            self._wake_event.clear()

    def run_once(self) -> bool:
        """One sync tick. Returns False when skipped; never raises."""
        if not self._tick_lock.acquire(blocking=False):
            logger.debug('Sync tick skipped: previous tick still running')
            return False
        try:
            self._is_syncing = True
            self._tick()
        except Exception as exc:
            # store or auth failures outside the sync body; the loop keeps running
            logger.exception('iFood sync tick failed')
            self._record(str(exc) or exc.__class__.__name__)
        finally:
            self._is_syncing = False
            self._tick_lock.release()
        return True

    def _tick(self):
        config = self.token_manager.current_config()
        if config is None or not config.is_active:
            return

        ok, error = self.token_manager.ensure_authenticated()
        self.notifier.publish(sync_events.AUTH_STATUS, {'authenticated': ok, 'error': error})
        if not ok:
            logger.warning('iFood sync skipped: %s', error)
            self._record(error)
            return

        errors = []
        try:
            if self.events_polling:
                self.engine.poll_events()
            summary = self.engine.sync_all()
            errors.extend(e['error'] for e in summary['errors'].values())
        except IFoodError as exc:
            logger.error('iFood sync failed: %s (%s)', exc.message, exc.kind)
            errors.append(exc.message)
        except Exception as exc:
            # the loop must survive unexpected failures; they are recorded on the state
            logger.exception('Unexpected iFood sync error')
            errors.append(str(exc))

        self.engine.expire_pending_actions()
        self._record('; '.join(errors) or None)

    def _record(self, error: Optional[str]):
        now = self._clock()
        state = self.state_cell.update(lambda s: s.evolve(last_sync_at=now, last_sync_error=error))
        if state.config is not None and error is None:
            try:
                self.store.touch_last_sync(state.config.merchant_id, now)
            except Exception:
                logger.exception('Could not persist last sync time')
        self.notifier.publish(sync_events.SYNC_STATUS, {
            'last_sync_at': now.isoformat(),
            'error': error,
        })
