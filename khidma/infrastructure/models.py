"""
SQLAlchemy ORM models.

Tables
------
* ``users``             -- authenticated actors (identity is issued upstream)
* ``expediteurs``       -- shipper profiles, one per user at most
* ``transporteurs``     -- carrier profiles, one per user at most
* ``vehicles``          -- carrier fleet with capacity and daily rate
* ``addresses``         -- saved addresses with coordinates and H3 cell
* ``transport_orders``  -- the order aggregate with its price snapshot
* ``quotes``            -- carrier offers against one order

Orders and quotes carry an integer ``version`` bumped on every status
change; writes are compare-and-swap on ``(status, version)``.

Indexes
-------
* **B-Tree** on ``status``, owner ids and ``created_at`` for listings.
* ``addresses.h3_cell`` for the radius search pre-filter.
"""

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)

from .database import Base, UTCDateTime
from khidma.domain.entities import utcnow
from khidma.domain.enums import (
    GoodsType,
    OrderStatus,
    Priority,
    QuoteStatus,
    UserRole,
    VehicleStatus,
    VehicleType,
)


class UserModel(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(String(255), unique=True, nullable=False)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    role = Column(Enum(UserRole), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(UTCDateTime, default=utcnow, nullable=False)


class ShipperModel(Base):
    __tablename__ = "expediteurs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), unique=True, nullable=False)
    company_name = Column(String(200), nullable=True)
    created_at = Column(UTCDateTime, default=utcnow, nullable=False)


class CarrierModel(Base):
    __tablename__ = "transporteurs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), unique=True, nullable=False)
    company_name = Column(String(200), nullable=False)
    license_number = Column(String(50), nullable=True)
    created_at = Column(UTCDateTime, default=utcnow, nullable=False)


class VehicleModel(Base):
    __tablename__ = "vehicles"

    id = Column(Integer, primary_key=True, autoincrement=True)
    carrier_id = Column(Integer, ForeignKey("transporteurs.id"), nullable=False)
    vehicle_type = Column(Enum(VehicleType), nullable=False)
    plate_number = Column(String(20), unique=True, nullable=False)
    capacity_tons = Column(Float, nullable=False)
    volume_m3 = Column(Float, nullable=True)
    status = Column(Enum(VehicleStatus), default=VehicleStatus.DISPONIBLE, nullable=False)
    daily_rate = Column(Float, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(UTCDateTime, default=utcnow, nullable=False)

    __table_args__ = (
        Index("idx_vehicles_carrier", "carrier_id"),
        Index("idx_vehicles_status", "status"),
    )


class AddressModel(Base):
    __tablename__ = "addresses"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    label = Column(String(100), nullable=False)
    street = Column(String(255), nullable=True)
    city = Column(String(100), nullable=False)
    region = Column(String(100), nullable=True)
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    h3_cell = Column(String(20), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(UTCDateTime, default=utcnow, nullable=False)

    __table_args__ = (
        Index("idx_addresses_user", "user_id"),
        Index("idx_addresses_cell", "h3_cell"),
    )


class TransportOrderModel(Base):
    __tablename__ = "transport_orders"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_number = Column(String(20), unique=True, nullable=False)
    shipper_id = Column(Integer, ForeignKey("expediteurs.id"), nullable=False)
    carrier_id = Column(Integer, ForeignKey("transporteurs.id"), nullable=True)
    vehicle_id = Column(Integer, ForeignKey("vehicles.id"), nullable=True)

    # Route (coordinates are a snapshot of the addresses at creation)
    departure_address_id = Column(Integer, ForeignKey("addresses.id"), nullable=False)
    destination_address_id = Column(Integer, ForeignKey("addresses.id"), nullable=False)
    departure_lat = Column(Float, nullable=False)
    departure_lng = Column(Float, nullable=False)
    destination_lat = Column(Float, nullable=False)
    destination_lng = Column(Float, nullable=False)
    departure_date = Column(UTCDateTime, nullable=False)
    delivery_date = Column(UTCDateTime, nullable=True)

    # Goods
    goods_type = Column(Enum(GoodsType), nullable=False)
    goods_description = Column(Text, nullable=False)
    weight_kg = Column(Float, nullable=False)
    volume_m3 = Column(Float, nullable=True)
    quantity = Column(Integer, nullable=True)
    declared_value = Column(Float, nullable=True)
    special_requirements = Column(JSON, default=list, nullable=False)
    priority = Column(Enum(Priority), default=Priority.NORMAL, nullable=False)
    notes = Column(Text, nullable=True)

    # Estimates
    estimated_distance_km = Column(Float, nullable=True)
    estimated_duration_minutes = Column(Integer, nullable=True)
    estimated_price = Column(Float, nullable=True)

    status = Column(Enum(OrderStatus), default=OrderStatus.DEMANDE, nullable=False)
    version = Column(Integer, default=1, nullable=False)

    # Price snapshot, fixed when a quote is accepted
    base_price = Column(Float, nullable=True)
    distance_price = Column(Float, nullable=True)
    weight_price = Column(Float, nullable=True)
    fees_price = Column(Float, nullable=True)
    tax_amount = Column(Float, nullable=True)
    total_price = Column(Float, nullable=True)

    cancellation_reason = Column(Text, nullable=True)
    delivery_proof = Column(JSON, nullable=True)
    signature = Column(Text, nullable=True)
    delivery_notes = Column(Text, nullable=True)

    created_at = Column(UTCDateTime, default=utcnow, nullable=False)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow, nullable=False)
    assigned_at = Column(UTCDateTime, nullable=True)
    started_at = Column(UTCDateTime, nullable=True)
    delivered_at = Column(UTCDateTime, nullable=True)
    completed_at = Column(UTCDateTime, nullable=True)
    cancelled_at = Column(UTCDateTime, nullable=True)

    __table_args__ = (
        Index("idx_orders_status", "status"),
        Index("idx_orders_shipper", "shipper_id"),
        Index("idx_orders_carrier", "carrier_id"),
        Index("idx_orders_created", "created_at"),
    )


class QuoteModel(Base):
    __tablename__ = "quotes"

    id = Column(Integer, primary_key=True, autoincrement=True)
    quote_number = Column(String(20), unique=True, nullable=False)
    order_id = Column(Integer, ForeignKey("transport_orders.id"), nullable=False)
    carrier_id = Column(Integer, ForeignKey("transporteurs.id"), nullable=False)
    vehicle_id = Column(Integer, ForeignKey("vehicles.id"), nullable=True)

    base_price = Column(Float, nullable=False)
    distance_price = Column(Float, nullable=False)
    weight_price = Column(Float, nullable=False)
    volume_price = Column(Float, default=0, nullable=False)
    fuel_surcharge = Column(Float, default=0, nullable=False)
    toll_fees = Column(Float, default=0, nullable=False)
    handling_fees = Column(Float, default=0, nullable=False)
    insurance_fees = Column(Float, default=0, nullable=False)
    other_fees = Column(Float, default=0, nullable=False)
    subtotal = Column(Float, nullable=False)
    taxes = Column(Float, nullable=False)
    total_price = Column(Float, nullable=False)

    valid_until = Column(UTCDateTime, nullable=False)
    payment_terms = Column(Text, nullable=True)
    delivery_terms = Column(Text, nullable=True)
    conditions = Column(Text, nullable=True)
    notes = Column(Text, nullable=True)

    status = Column(Enum(QuoteStatus), default=QuoteStatus.BROUILLON, nullable=False)
    version = Column(Integer, default=1, nullable=False)
    sent_at = Column(UTCDateTime, nullable=True)
    responded_at = Column(UTCDateTime, nullable=True)
    rejection_reason = Column(Text, nullable=True)
    revised_from_id = Column(Integer, ForeignKey("quotes.id"), nullable=True)

    created_at = Column(UTCDateTime, default=utcnow, nullable=False)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        Index("idx_quotes_order", "order_id"),
        Index("idx_quotes_carrier", "carrier_id"),
        Index("idx_quotes_status", "status"),
        Index("idx_quotes_valid_until", "valid_until"),
    )
