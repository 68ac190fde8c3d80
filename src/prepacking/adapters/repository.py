import abc
from typing import List, Optional, Set

from prepacking.domain import model


class AbstractRepository(abc.ABC):
    def __init__(self):
        self.seen = set()  # type: Set[model.PrepackingEvent]

    def add(self, prepacking_event: model.PrepackingEvent) -> str:
        self._add(prepacking_event)
        self.seen.add(prepacking_event)
        return prepacking_event.id

    def get(self, event_id) -> Optional[model.PrepackingEvent]:
        prepacking_event = self._get(event_id)
        if prepacking_event:
            self.seen.add(prepacking_event)
        return prepacking_event

    def list_by(self, facility_id: Optional[str] = None, program_id: Optional[str] = None) -> List[model.PrepackingEvent]:
        prepacking_events = self._list_by(facility_id, program_id)
        for prepacking_event in prepacking_events:
            self.seen.add(prepacking_event)
        return prepacking_events

    def delete(self, prepacking_event: model.PrepackingEvent) -> None:
        self._delete(prepacking_event)
        self.seen.discard(prepacking_event)

    @abc.abstractmethod
    def _add(self, prepacking_event: model.PrepackingEvent):
        raise NotImplementedError

    @abc.abstractmethod
    def _get(self, event_id) -> Optional[model.PrepackingEvent]:
        raise NotImplementedError

    @abc.abstractmethod
    def _list_by(self, facility_id, program_id) -> List[model.PrepackingEvent]:
        raise NotImplementedError

    @abc.abstractmethod
    def _delete(self, prepacking_event: model.PrepackingEvent):
        raise NotImplementedError


class SqlAlchemyRepository(AbstractRepository):
    def __init__(self, session):
        super().__init__()
        self.session = session

    def _add(self, prepacking_event):
        self.session.add(prepacking_event)

    def _get(self, event_id):
        return self.session.query(model.PrepackingEvent).filter_by(id=event_id).first()

    def _list_by(self, facility_id, program_id):
        query = self.session.query(model.PrepackingEvent)
        if facility_id:
            query = query.filter_by(facility_id=facility_id)
        if program_id:
            query = query.filter_by(program_id=program_id)
        return query.order_by(model.PrepackingEvent.date_created).all()

    def _delete(self, prepacking_event):
        self.session.delete(prepacking_event)
