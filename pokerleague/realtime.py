"""In-process publish/subscribe for live tournament updates.

Each Server-Sent Events connection subscribes a queue for one tournament.
Publishing never raises: a failed broadcast is logged and the mutation
that triggered it still succeeds.
"""
from collections import defaultdict
from datetime import datetime
import json
import logging
import queue
import threading

logger = logging.getLogger(__name__)

PLAYERS_UPDATED = 'players:updated'
FEED_ITEM = 'feed:item'
FEED_DELETED = 'feed:deleted'
REACTIONS_UPDATED = 'reactions:updated'
TOURNAMENT_UPDATED = 'tournament:updated'


def format_sse(payload, event=None):
    msg = f'data: {payload}\n\n'
    if event:
        msg = f'event: {event}\n{msg}'
    return msg


class Broadcaster:
    def __init__(self, max_queue=100):
        self.max_queue = max_queue
        self._lock = threading.Lock()
        self._subscribers = defaultdict(list)

    def subscribe(self, tournament_id):
        q = queue.Queue(maxsize=self.max_queue)
        with self._lock:
            self._subscribers[tournament_id].append(q)
        return q

    def unsubscribe(self, tournament_id, q):
        with self._lock:
            listeners = self._subscribers.get(tournament_id, [])
            if q in listeners:
                listeners.remove(q)
            if not listeners:
                self._subscribers.pop(tournament_id, None)

    def subscriber_count(self, tournament_id):
        with self._lock:
            return len(self._subscribers.get(tournament_id, []))

    def publish(self, tournament_id, event_type, data=None):
        """Send an event to every subscriber of a tournament. Returns how many received it."""
        try:
            payload = json.dumps({
                'type': event_type,
                'tournamentId': tournament_id,
                'data': data,
                'timestamp': datetime.utcnow().isoformat(),
            }, default=str)
            with self._lock:
                listeners = list(self._subscribers.get(tournament_id, []))
            delivered = 0
            for q in listeners:
                try:
                    q.put_nowait((event_type, payload))
                    delivered += 1
                except queue.Full:
                    logger.warning('Dropping %s for a slow subscriber on tournament %s', event_type, tournament_id)
            return delivered
        except Exception:
            logger.exception('Failed to broadcast %s for tournament %s', event_type, tournament_id)
            return 0

    def stream(self, tournament_id, heartbeat=15.0):
        """Generator of SSE frames for one connection; unsubscribes when the client goes away."""
        q = self.subscribe(tournament_id)
        try:
            yield format_sse(json.dumps({'tournamentId': tournament_id}), event='connected')
            while True:
                try:
                    event_type, payload = q.get(timeout=heartbeat)
                except queue.Empty:
                    yield ': heartbeat\n\n'
                    continue
                yield format_sse(payload, event=event_type)
        finally:
            self.unsubscribe(tournament_id, q)
