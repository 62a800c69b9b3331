"""Initial schema: identities, fleet, addresses, transport orders and quotes.

Revision ID: 001
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


revision = "001"
down_revision = None
branch_labels = None
depends_on = None

VEHICLE_TYPES = (
    "CAMION_3T", "CAMION_5T", "CAMION_10T", "CAMION_20T", "CAMION_35T",
    "REMORQUE", "SEMI_REMORQUE", "FOURGON", "BENNE", "CITERNE",
)
GOODS_TYPES = (
    "PRODUITS_ALIMENTAIRES", "MATERIAUX_CONSTRUCTION", "EQUIPEMENTS",
    "MOBILIER", "TEXTILES", "VEHICULES", "BETAIL", "LIQUIDES",
    "PRODUITS_CHIMIQUES", "PRODUITS_DANGEREUX", "AUTRE",
)
ORDER_STATUSES = (
    "DEMANDE", "DEVIS_ENVOYE", "DEVIS_ACCEPTE", "DEVIS_REFUSE", "CONFIRME",
    "EN_PREPARATION", "EN_TRANSIT", "LIVRE", "TERMINE", "ANNULE", "LITIGE",
    "REMBOURSE",
)
QUOTE_STATUSES = ("BROUILLON", "ENVOYE", "ACCEPTE", "REFUSE", "EXPIRE", "MODIFIE")


def _timestamp(name: str, nullable: bool = False) -> sa.Column:
    if nullable:
        return sa.Column(name, sa.DateTime(timezone=True), nullable=True)
    return sa.Column(
        name,
        sa.DateTime(timezone=True),
        server_default=sa.func.now(),
        nullable=False,
    )


def upgrade() -> None:
    # ── users and profiles ────────────────────────────────────────────
    op.create_table(
        "users",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("email", sa.String(255), unique=True, nullable=False),
        sa.Column("first_name", sa.String(100), nullable=False),
        sa.Column("last_name", sa.String(100), nullable=False),
        sa.Column(
            "role",
            sa.Enum("EXPEDITEUR", "TRANSPORTEUR", "ADMIN", name="userrole"),
            nullable=False,
        ),
        sa.Column("is_active", sa.Boolean, server_default=sa.true(), nullable=False),
        _timestamp("created_at"),
    )
    op.create_table(
        "expediteurs",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "user_id", sa.Integer, sa.ForeignKey("users.id"), unique=True, nullable=False
        ),
        sa.Column("company_name", sa.String(200), nullable=True),
        _timestamp("created_at"),
    )
    op.create_table(
        "transporteurs",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "user_id", sa.Integer, sa.ForeignKey("users.id"), unique=True, nullable=False
        ),
        sa.Column("company_name", sa.String(200), nullable=False),
        sa.Column("license_number", sa.String(50), nullable=True),
        _timestamp("created_at"),
    )

    # ── vehicles ──────────────────────────────────────────────────────
    op.create_table(
        "vehicles",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "carrier_id", sa.Integer, sa.ForeignKey("transporteurs.id"), nullable=False
        ),
        sa.Column("vehicle_type", sa.Enum(*VEHICLE_TYPES, name="vehicletype"), nullable=False),
        sa.Column("plate_number", sa.String(20), unique=True, nullable=False),
        sa.Column("capacity_tons", sa.Float, nullable=False),
        sa.Column("volume_m3", sa.Float, nullable=True),
        sa.Column(
            "status",
            sa.Enum(
                "DISPONIBLE", "RESERVE", "EN_COURS", "MAINTENANCE", "HORS_SERVICE",
                name="vehiclestatus",
            ),
            server_default="DISPONIBLE",
            nullable=False,
        ),
        sa.Column("daily_rate", sa.Float, nullable=True),
        sa.Column("is_active", sa.Boolean, server_default=sa.true(), nullable=False),
        _timestamp("created_at"),
    )
    op.create_index("idx_vehicles_carrier", "vehicles", ["carrier_id"])
    op.create_index("idx_vehicles_status", "vehicles", ["status"])

    # ── addresses ─────────────────────────────────────────────────────
    op.create_table(
        "addresses",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Integer, sa.ForeignKey("users.id"), nullable=False),
        sa.Column("label", sa.String(100), nullable=False),
        sa.Column("street", sa.String(255), nullable=True),
        sa.Column("city", sa.String(100), nullable=False),
        sa.Column("region", sa.String(100), nullable=True),
        sa.Column("latitude", sa.Float, nullable=False),
        sa.Column("longitude", sa.Float, nullable=False),
        sa.Column("h3_cell", sa.String(20), nullable=False),
        sa.Column("is_active", sa.Boolean, server_default=sa.true(), nullable=False),
        _timestamp("created_at"),
    )
    op.create_index("idx_addresses_user", "addresses", ["user_id"])
    op.create_index("idx_addresses_cell", "addresses", ["h3_cell"])

    # ── transport_orders ──────────────────────────────────────────────
    op.create_table(
        "transport_orders",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("order_number", sa.String(20), unique=True, nullable=False),
        sa.Column(
            "shipper_id", sa.Integer, sa.ForeignKey("expediteurs.id"), nullable=False
        ),
        sa.Column(
            "carrier_id", sa.Integer, sa.ForeignKey("transporteurs.id"), nullable=True
        ),
        sa.Column("vehicle_id", sa.Integer, sa.ForeignKey("vehicles.id"), nullable=True),
        sa.Column(
            "departure_address_id", sa.Integer, sa.ForeignKey("addresses.id"), nullable=False
        ),
        sa.Column(
            "destination_address_id", sa.Integer, sa.ForeignKey("addresses.id"), nullable=False
        ),
        sa.Column("departure_lat", sa.Float, nullable=False),
        sa.Column("departure_lng", sa.Float, nullable=False),
        sa.Column("destination_lat", sa.Float, nullable=False),
        sa.Column("destination_lng", sa.Float, nullable=False),
        sa.Column("departure_date", sa.DateTime(timezone=True), nullable=False),
        _timestamp("delivery_date", nullable=True),
        sa.Column("goods_type", sa.Enum(*GOODS_TYPES, name="goodstype"), nullable=False),
        sa.Column("goods_description", sa.Text, nullable=False),
        sa.Column("weight_kg", sa.Float, nullable=False),
        sa.Column("volume_m3", sa.Float, nullable=True),
        sa.Column("quantity", sa.Integer, nullable=True),
        sa.Column("declared_value", sa.Float, nullable=True),
        sa.Column("special_requirements", sa.JSON, nullable=False),
        sa.Column(
            "priority",
            sa.Enum("LOW", "NORMAL", "HIGH", "URGENT", name="priority"),
            server_default="NORMAL",
            nullable=False,
        ),
        sa.Column("notes", sa.Text, nullable=True),
        sa.Column("estimated_distance_km", sa.Float, nullable=True),
        sa.Column("estimated_duration_minutes", sa.Integer, nullable=True),
        sa.Column("estimated_price", sa.Float, nullable=True),
        sa.Column(
            "status",
            sa.Enum(*ORDER_STATUSES, name="orderstatus"),
            server_default="DEMANDE",
            nullable=False,
        ),
        sa.Column("version", sa.Integer, server_default="1", nullable=False),
        sa.Column("base_price", sa.Float, nullable=True),
        sa.Column("distance_price", sa.Float, nullable=True),
        sa.Column("weight_price", sa.Float, nullable=True),
        sa.Column("fees_price", sa.Float, nullable=True),
        sa.Column("tax_amount", sa.Float, nullable=True),
        sa.Column("total_price", sa.Float, nullable=True),
        sa.Column("cancellation_reason", sa.Text, nullable=True),
        sa.Column("delivery_proof", sa.JSON, nullable=True),
        sa.Column("signature", sa.Text, nullable=True),
        sa.Column("delivery_notes", sa.Text, nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        _timestamp("assigned_at", nullable=True),
        _timestamp("started_at", nullable=True),
        _timestamp("delivered_at", nullable=True),
        _timestamp("completed_at", nullable=True),
        _timestamp("cancelled_at", nullable=True),
    )
    op.create_index("idx_orders_status", "transport_orders", ["status"])
    op.create_index("idx_orders_shipper", "transport_orders", ["shipper_id"])
    op.create_index("idx_orders_carrier", "transport_orders", ["carrier_id"])
    op.create_index("idx_orders_created", "transport_orders", ["created_at"])

    # ── quotes ────────────────────────────────────────────────────────
    op.create_table(
        "quotes",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("quote_number", sa.String(20), unique=True, nullable=False),
        sa.Column(
            "order_id", sa.Integer, sa.ForeignKey("transport_orders.id"), nullable=False
        ),
        sa.Column(
            "carrier_id", sa.Integer, sa.ForeignKey("transporteurs.id"), nullable=False
        ),
        sa.Column("vehicle_id", sa.Integer, sa.ForeignKey("vehicles.id"), nullable=True),
        sa.Column("base_price", sa.Float, nullable=False),
        sa.Column("distance_price", sa.Float, nullable=False),
        sa.Column("weight_price", sa.Float, nullable=False),
        sa.Column("volume_price", sa.Float, server_default="0", nullable=False),
        sa.Column("fuel_surcharge", sa.Float, server_default="0", nullable=False),
        sa.Column("toll_fees", sa.Float, server_default="0", nullable=False),
        sa.Column("handling_fees", sa.Float, server_default="0", nullable=False),
        sa.Column("insurance_fees", sa.Float, server_default="0", nullable=False),
        sa.Column("other_fees", sa.Float, server_default="0", nullable=False),
        sa.Column("subtotal", sa.Float, nullable=False),
        sa.Column("taxes", sa.Float, nullable=False),
        sa.Column("total_price", sa.Float, nullable=False),
        sa.Column("valid_until", sa.DateTime(timezone=True), nullable=False),
        sa.Column("payment_terms", sa.Text, nullable=True),
        sa.Column("delivery_terms", sa.Text, nullable=True),
        sa.Column("conditions", sa.Text, nullable=True),
        sa.Column("notes", sa.Text, nullable=True),
        sa.Column(
            "status",
            sa.Enum(*QUOTE_STATUSES, name="quotestatus"),
            server_default="BROUILLON",
            nullable=False,
        ),
        sa.Column("version", sa.Integer, server_default="1", nullable=False),
        _timestamp("sent_at", nullable=True),
        _timestamp("responded_at", nullable=True),
        sa.Column("rejection_reason", sa.Text, nullable=True),
        sa.Column("revised_from_id", sa.Integer, sa.ForeignKey("quotes.id"), nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
    )
    op.create_index("idx_quotes_order", "quotes", ["order_id"])
    op.create_index("idx_quotes_carrier", "quotes", ["carrier_id"])
    op.create_index("idx_quotes_status", "quotes", ["status"])
    op.create_index("idx_quotes_valid_until", "quotes", ["valid_until"])


def downgrade() -> None:
    op.drop_table("quotes")
    op.drop_table("transport_orders")
    op.drop_table("addresses")
    op.drop_table("vehicles")
    op.drop_table("transporteurs")
    op.drop_table("expediteurs")
    op.drop_table("users")
    for name in (
        "quotestatus", "orderstatus", "priority", "goodstype",
        "vehiclestatus", "vehicletype", "userrole",
    ):
        op.execute(f"DROP TYPE IF EXISTS {name}")
