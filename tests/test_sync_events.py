import json

from sync_events import ORDER_NEW, SyncNotifier


def test_publish_reaches_queues_and_callbacks():
    notifier = SyncNotifier()
    q = notifier.register()
    received = []
    notifier.subscribe(lambda event_type, data: received.append((event_type, data)))

    notifier.publish(ORDER_NEW, {'id': 'o-1'})

    message = q.get_nowait()
    assert message.startswith('event: order_new\n')
    assert json.loads(message.split('data: ', 1)[1]) == {'id': 'o-1'}
    assert received == [(ORDER_NEW, {'id': 'o-1'})]


def test_full_queue_client_is_dropped():
    notifier = SyncNotifier(queue_size=1)
    notifier.register()
    notifier.publish('a', {})
    notifier.publish('b', {})
    assert notifier.client_count == 0


def test_failing_callback_does_not_block_others():
    notifier = SyncNotifier()
    received = []

    def broken(event_type, data):
        raise RuntimeError('boom')

    notifier.subscribe(broken)
    notifier.subscribe(lambda event_type, data: received.append(event_type))
    notifier.publish('x', {})
    assert received == ['x']


def test_unregister_and_unsubscribe():
    notifier = SyncNotifier()
    q = notifier.register()
    callback = lambda event_type, data: None
    notifier.subscribe(callback)
    notifier.unregister(q)
    notifier.unsubscribe(callback)
    assert notifier.client_count == 0
