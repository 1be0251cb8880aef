from __future__ import annotations

from sqlmodel import Session, SQLModel, create_engine, select

from app.domain.models import EventEnvelope, EventRecord
from app.infra.events import EventBus


def test_event_bus_publish_and_subscribe() -> None:
    engine = create_engine("sqlite:///:memory:")
    SQLModel.metadata.create_all(engine)

    bus = EventBus()
    seen: list[str] = []

    def handler(event: EventEnvelope) -> None:
        seen.append(event.event_id)

    event = EventEnvelope(
        event_type="boundary.published",
        actor_id="1",
        payload={"region_id": 7, "version_number": 2},
    )
    bus.subscribe("boundary.published", handler)

    with Session(engine) as session:
        bus.publish(event, session=session)
        session.commit()

    with Session(engine) as session:
        stored = session.exec(select(EventRecord)).all()

    assert len(stored) == 1
    assert stored[0].event_id == event.event_id
    assert stored[0].payload == {"region_id": 7, "version_number": 2}
    assert seen == [event.event_id]


def test_wildcard_subscriber_and_unsubscribe() -> None:
    engine = create_engine("sqlite:///:memory:")
    SQLModel.metadata.create_all(engine)

    bus = EventBus()
    seen: list[str] = []

    def handler(event: EventEnvelope) -> None:
        seen.append(event.event_type)

    bus.subscribe("*", handler)
    with Session(engine) as session:
        bus.publish(EventEnvelope(event_type="boundary.rolled_back", payload={}), session=session)
        bus.unsubscribe("*", handler)
        bus.publish(EventEnvelope(event_type="boundary.published", payload={}), session=session)
        session.commit()

    assert seen == ["boundary.rolled_back"]
