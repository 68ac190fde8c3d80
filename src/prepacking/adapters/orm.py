import logging
from sqlalchemy import (
    Table,
    Column,
    Integer,
    String,
    DateTime,
    Enum,
    ForeignKey,
    JSON,
    event,
)
from sqlalchemy.ext.orderinglist import ordering_list
from sqlalchemy.orm import registry, relationship

from prepacking.domain import model

logger = logging.getLogger(__name__)

mapper_registry = registry()
metadata = mapper_registry.metadata

prepacking_events = Table(
    "prepacking_events",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("date_created", DateTime(timezone=True), nullable=False),
    Column("date_authorised", DateTime(timezone=True)),
    Column("facility_id", String(36), nullable=False, index=True),
    Column("program_id", String(36), nullable=False, index=True),
    Column("comments", String(255)),
    Column("prepacker_user_id", String(36)),
    Column("prepacker_user_names", String(255)),
    Column(
        "status",
        Enum(model.PrepackingEventStatus, native_enum=False, length=20),
        nullable=False,
    ),
)

prepacking_event_line_items = Table(
    "prepacking_event_line_items",
    metadata,
    Column("id", String(36), primary_key=True),
    Column(
        "prepacking_event_id",
        String(36),
        ForeignKey("prepacking_events.id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column("position", Integer, nullable=False),
    Column("orderable_id", String(36), nullable=False),
    Column("lot_id", String(36)),
    Column("prepack_size", Integer, nullable=False),
    Column("number_of_prepacks", Integer, nullable=False),
    Column("remarks", String(255)),
    Column("stock_on_hand", Integer),
    Column("extra_data", JSON),
)

status_changes = Table(
    "status_changes",
    metadata,
    Column("id", String(36), primary_key=True),
    Column(
        "prepacking_event_id",
        String(36),
        ForeignKey("prepacking_events.id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column(
        "status",
        Enum(model.PrepackingEventStatus, native_enum=False, length=20),
        nullable=False,
    ),
    Column("author_id", String(36)),
    Column("created_date", DateTime(timezone=True), nullable=False),
)


def start_mappers():
    logger.info("Starting mappers")
    line_items_mapper = mapper_registry.map_imperatively(
        model.PrepackingEventLineItem, prepacking_event_line_items
    )
    status_changes_mapper = mapper_registry.map_imperatively(
        model.StatusChange, status_changes
    )
    mapper_registry.map_imperatively(
        model.PrepackingEvent,
        prepacking_events,
        properties={
            "line_items": relationship(
                line_items_mapper,
                order_by=prepacking_event_line_items.c.position,
                collection_class=ordering_list("position"),
                cascade="all, delete-orphan",
            ),
            "status_changes": relationship(
                status_changes_mapper,
                order_by=status_changes.c.created_date,
                cascade="all, delete-orphan",
            ),
        },
    )

    event.listen(model.PrepackingEvent, "load", receive_load)


def receive_load(prepacking_event, _):
    prepacking_event.events = []
    prepacking_event.context = None
