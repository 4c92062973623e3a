"""SQLAlchemy models for the order store service."""

from sqlalchemy import Boolean, Column, DateTime, Float, ForeignKey, Integer, Numeric, String, Text, func
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


class User(Base):
    __tablename__ = "users"

    id = Column(String(64), primary_key=True)
    name = Column(String(100), nullable=False)
    role = Column(String(20), nullable=False)


class Order(Base):
    """Order header; the four collections below are owned and deleted with it."""

    __tablename__ = "orders"

    id = Column(String(64), primary_key=True)
    client_name = Column(String(200), nullable=False)
    client_address = Column(String(300), nullable=False, default="")
    status = Column(String(32), nullable=False, default="en_armado", index=True)
    payment_method = Column(String(32))
    is_paid = Column(Boolean, nullable=False, default=False)
    armed_by = Column(String(100))
    controlled_by = Column(String(100))
    awaiting_payment_verification = Column(Boolean, nullable=False, default=False)
    initial_notes = Column(Text)
    currently_working_by = Column(String(100))
    working_start_time = Column(DateTime(timezone=True))
    total_amount = Column(Numeric(14, 2))
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), index=True)

    items = relationship("OrderItem", cascade="all, delete-orphan", order_by="OrderItem.position")
    missing_items = relationship("MissingItem", cascade="all, delete-orphan", order_by="MissingItem.position")
    returned_items = relationship("ReturnedItem", cascade="all, delete-orphan", order_by="ReturnedItem.position")
    history = relationship("HistoryEntry", cascade="all, delete-orphan", order_by="HistoryEntry.created_at")


class OrderItem(Base):
    __tablename__ = "order_items"

    # line item ids are only unique within their order
    id = Column(String(64), primary_key=True)
    order_id = Column(String(64), ForeignKey("orders.id", ondelete="CASCADE"), primary_key=True, index=True)
    position = Column(Integer, nullable=False, default=0)
    code = Column(String(64))
    name = Column(String(200), nullable=False)
    quantity = Column(Float, nullable=False)
    original_quantity = Column(Float)
    is_checked = Column(Boolean, nullable=False, default=False)
    unit_price = Column(Numeric(14, 2))
    subtotal = Column(Numeric(14, 2))


class MissingItem(Base):
    __tablename__ = "missing_items"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(String(64), ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    position = Column(Integer, nullable=False, default=0)
    # by value: the line item may have been removed since
    product_id = Column(String(64), nullable=False)
    product_name = Column(String(200), nullable=False)
    code = Column(String(64))
    quantity = Column(Float, nullable=False)


class ReturnedItem(Base):
    __tablename__ = "returned_items"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(String(64), ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    position = Column(Integer, nullable=False, default=0)
    product_id = Column(String(64), nullable=False)
    product_name = Column(String(200), nullable=False)
    code = Column(String(64))
    quantity = Column(Float, nullable=False)
    reason = Column(Text)


class HistoryEntry(Base):
    __tablename__ = "order_history"

    id = Column(String(64), primary_key=True)
    order_id = Column(String(64), ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    action = Column(String(300), nullable=False)
    user_name = Column(String(100), nullable=False)
    notes = Column(Text)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


OWNED_TABLES = (
    OrderItem.__tablename__,
    MissingItem.__tablename__,
    ReturnedItem.__tablename__,
    HistoryEntry.__tablename__,
)
