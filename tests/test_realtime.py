import json
import logging

from pokerleague.realtime import Broadcaster, format_sse, PLAYERS_UPDATED


class Unprintable:
    def __str__(self):
        raise RuntimeError('boom')


def test_format_sse():
    assert format_sse('{}') == 'data: {}\n\n'
    assert format_sse('{}', event='feed:item') == 'event: feed:item\ndata: {}\n\n'


def test_publish_reaches_only_that_tournament():
    hub = Broadcaster()
    first = hub.subscribe(1)
    second = hub.subscribe(1)
    other = hub.subscribe(2)
    assert hub.publish(1, PLAYERS_UPDATED, {'count': 3}) == 2
    event, payload = first.get_nowait()
    assert event == PLAYERS_UPDATED
    body = json.loads(payload)
    assert body['type'] == PLAYERS_UPDATED
    assert body['tournamentId'] == 1
    assert body['data'] == {'count': 3}
    assert second.qsize() == 1
    assert other.empty()


def test_unsubscribe():
    hub = Broadcaster()
    q = hub.subscribe(7)
    assert hub.subscriber_count(7) == 1
    hub.unsubscribe(7, q)
    assert hub.subscriber_count(7) == 0
    assert hub.publish(7, PLAYERS_UPDATED) == 0


def test_full_queue_drops_event():
    hub = Broadcaster(max_queue=1)
    q = hub.subscribe(1)
    assert hub.publish(1, 'a') == 1
    assert hub.publish(1, 'b') == 0
    assert q.get_nowait()[0] == 'a'


def test_publish_failure_is_logged_not_raised(caplog):
    hub = Broadcaster()
    hub.subscribe(1)
    with caplog.at_level(logging.ERROR, logger='pokerleague.realtime'):
        assert hub.publish(1, PLAYERS_UPDATED, {'bad': Unprintable()}) == 0
    assert 'Failed to broadcast' in caplog.text


def test_stream_yields_connected_then_events():
    hub = Broadcaster()
    frames = hub.stream(5, heartbeat=0.01)
    assert next(frames).startswith('event: connected\n')
    assert hub.subscriber_count(5) == 1
    assert next(frames) == ': heartbeat\n\n'
    hub.publish(5, PLAYERS_UPDATED, [])
    frame = next(frames)
    assert frame.startswith(f'event: {PLAYERS_UPDATED}\n')
    frames.close()
    assert hub.subscriber_count(5) == 0
