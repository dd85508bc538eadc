import asyncio
import threading

from guest_validation.services.realtime import GuestChange


def test_subscribers_receive_published_changes(broker):
    async def scenario():
        first = broker.subscribe()
        second = broker.subscribe()
        broker.publish(GuestChange(event="INSERT", new={"guest_id": "A1"}))
        got = await asyncio.wait_for(first.get(), timeout=1)
        also = await asyncio.wait_for(second.get(), timeout=1)
        first.unsubscribe()
        second.unsubscribe()
        return got, also

    got, also = asyncio.run(scenario())
    assert got.new == {"guest_id": "A1"}
    assert also.event == "INSERT"


def test_publish_from_worker_thread(broker):
    async def scenario():
        subscription = broker.subscribe()
        worker = threading.Thread(
            target=broker.publish, args=(GuestChange(event="DELETE", old={"guest_id": "B2"}),)
        )
        worker.start()
        change = await asyncio.wait_for(subscription.get(), timeout=1)
        worker.join()
        subscription.unsubscribe()
        return change

    assert asyncio.run(scenario()).old == {"guest_id": "B2"}


def test_unsubscribed_and_other_tables_get_nothing(broker):
    async def scenario():
        closed = broker.subscribe()
        other = broker.subscribe(table="invoices")
        closed.unsubscribe()
        assert broker.subscriber_count == 1

        broker.publish(GuestChange(event="INSERT", new={}))
        await asyncio.sleep(0)
        pending = closed.drain() + other.drain()
        other.unsubscribe()
        return pending

    assert asyncio.run(scenario()) == []
    assert broker.subscriber_count == 0


def test_subscription_iterates_until_closed(broker):
    async def scenario():
        subscription = broker.subscribe()
        broker.publish(GuestChange(event="INSERT", new={"n": 1}))
        broker.publish(GuestChange(event="INSERT", new={"n": 2}))
        seen = []
        async for change in subscription:
            seen.append(change.new["n"])
            if len(seen) == 2:
                subscription.unsubscribe()
        return seen

    assert asyncio.run(scenario()) == [1, 2]
