# pylint: disable=attribute-defined-outside-init
from __future__ import annotations
import abc
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.orm.session import Session


import config
from prepacking.adapters import locks, referencedata, repository, stockmanagement
from prepacking.service_layer.extensions import ExtensionRegistry


class AbstractUnitOfWork(abc.ABC):
    prepacking_events: repository.AbstractRepository
    reference_data: referencedata.AbstractReferenceDataClient
    stock_ledger: stockmanagement.AbstractStockLedgerClient
    locks: locks.AbstractLockProvider
    extensions: ExtensionRegistry

    def __enter__(self) -> AbstractUnitOfWork:
        return self

    def __exit__(self, *args):
        self.rollback()

    def commit(self):
        self._commit()

    def collect_new_events(self):
        for prepacking_event in self.prepacking_events.seen:
            while prepacking_event.events:
                yield prepacking_event.events.pop(0)

    @abc.abstractmethod
    def _commit(self):
        raise NotImplementedError

    @abc.abstractmethod
    def rollback(self):
        raise NotImplementedError


DEFAULT_SESSION_FACTORY = sessionmaker(
    bind=create_engine(
        config.get_postgres_uri(),
        isolation_level="REPEATABLE READ",
    ),
    expire_on_commit=False,
)


class SqlAlchemyUnitOfWork(AbstractUnitOfWork):
    def __init__(
        self,
        session_factory=DEFAULT_SESSION_FACTORY,
        reference_data_impl=None,
        stock_ledger_impl=None,
        locks_impl=None,
        extensions=None,
    ):
        self.session_factory = session_factory
        self.reference_data = reference_data_impl or referencedata.HTTPReferenceDataClient()
        self.stock_ledger = stock_ledger_impl or stockmanagement.HTTPStockLedgerClient()
        self.locks = locks_impl or locks.RedisLockProvider()
        self.extensions = extensions or ExtensionRegistry.from_config(config.get_extension_config())

    def __enter__(self):
        self.session = self.session_factory()  # type: Session
        self.prepacking_events = repository.SqlAlchemyRepository(self.session)
        return super().__enter__()

    def __exit__(self, *args):
        super().__exit__(*args)
        self.session.close()

    def _commit(self):
        self.session.commit()

    def rollback(self):
        self.session.rollback()
