"""
DealerDesk Database Models

Tables:
  Business (read model for DealerGPT):
  1. users              - Staff accounts and roles
  2. vehicles           - Vehicle master (purchase, sale, payment split)
  3. customers          - Customer records
  4. leads              - Sales pipeline
  5. interactions       - Logged lead communications (append-only)
  6. appointments       - Viewings, collections, drop-offs
  7. tasks              - Staff to-dos
  8. jobs               - Logistics / workshop jobs
  9. purchase_invoices  - Uploaded purchase documents
  10. sales_invoices    - Uploaded sales documents

  DealerGPT:
  11. ai_conversations  - Conversation turns
  12. ai_memory         - Keyed memory blobs (unique key, optional TTL)
  13. ai_insights       - Acknowledgeable business insights
"""

from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import relationship

from db.session import Base

PIPELINE_STAGES = (
    "new",
    "contacted",
    "qualified",
    "test_drive_booked",
    "test_drive_completed",
    "negotiating",
    "deposit_taken",
    "finance_pending",
    "converted",
    "lost",
)
CLOSED_PIPELINE_STAGES = ("converted", "lost")

MEMORY_TYPES = ("user_preference", "interaction", "decision", "pattern", "alert")
MEMORY_PRIORITIES = ("low", "normal", "high", "critical")
INSIGHT_TYPES = ("alert", "recommendation", "pattern", "forecast")
INSIGHT_PRIORITIES = ("urgent", "high", "medium", "low")
INSIGHT_CATEGORIES = ("inventory", "sales", "customers", "leads", "finance")


def _in_list(column: str, values: tuple[str, ...]) -> str:
    quoted = ", ".join(f"'{v}'" for v in values)
    return f"{column} IN ({quoted})"


# ─── 1. Users ───────────────────────────────────────────────────────────────


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    username = Column(String(100), nullable=False, unique=True)
    password = Column(String(255), nullable=False)  # bcrypt hash
    email = Column(String(255), unique=True)
    first_name = Column(String(100))
    last_name = Column(String(100))
    role = Column(String(30), nullable=False, default="salesperson")
    is_active = Column(Boolean, nullable=False, default=True)
    last_login = Column(DateTime)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        CheckConstraint(
            "role IN ('admin', 'manager', 'salesperson', 'office_staff', 'marketing', 'showroom_staff')",
            name="ck_user_role",
        ),
        Index("ix_users_active_role", "is_active", "role"),
    )


# ─── 2. Vehicles ────────────────────────────────────────────────────────────


class Vehicle(Base):
    __tablename__ = "vehicles"

    id = Column(Integer, primary_key=True, autoincrement=True)
    stock_number = Column(String(50), unique=True)
    department = Column(String(50))
    buyer = Column(String(100))
    sales_status = Column(String(30))  # stock, sold, autolab, awaiting_delivery
    collection_status = Column(String(30))  # awd = awaiting delivery
    registration = Column(String(20))
    make = Column(String(100))
    model = Column(String(100))
    derivative = Column(String(255))
    colour = Column(String(50))
    mileage = Column(Integer)
    year = Column(Integer)

    # Purchase
    purchase_invoice_date = Column(DateTime)
    purchase_price_total = Column(Float)

    # Sale
    sale_date = Column(DateTime)
    salesperson = Column(String(100))
    cash_payment = Column(Float)
    bank_payment = Column(Float)
    finance_payment = Column(Float)
    px_value = Column(Float)  # part exchange
    total_sale_price = Column(Float)
    parts_cost = Column(Float)
    warranty_costs = Column(Float)
    total_gp = Column(Float)  # gross profit
    adj_gp = Column(Float)  # adjusted (net) profit
    customer_first_name = Column(String(100))
    customer_surname = Column(String(100))

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("ix_vehicles_status_make", "sales_status", "make"),
        Index("ix_vehicles_sale_date", "sale_date"),
        Index("ix_vehicles_purchase_date", "purchase_invoice_date"),
    )


# ─── 3. Customers ───────────────────────────────────────────────────────────


class Customer(Base):
    __tablename__ = "customers"

    id = Column(Integer, primary_key=True, autoincrement=True)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    email = Column(String(255))
    phone = Column(String(30))
    mobile = Column(String(30))
    address = Column(Text)
    city = Column(String(100))
    postcode = Column(String(10))
    customer_type = Column(String(20), nullable=False, default="prospect")
    notes = Column(Text)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        CheckConstraint("customer_type IN ('prospect', 'active', 'inactive')", name="ck_customer_type"),
        Index("ix_customers_name", "first_name", "last_name"),
    )


# ─── 4. Leads ───────────────────────────────────────────────────────────────


class Lead(Base):
    __tablename__ = "leads"

    id = Column(Integer, primary_key=True, autoincrement=True)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    email = Column(String(255))
    primary_phone = Column(String(30))
    vehicle_interests = Column(String(255))
    budget_min = Column(Float)
    budget_max = Column(Float)
    finance_required = Column(Boolean, default=False)
    lead_source = Column(String(50), nullable=False)
    pipeline_stage = Column(String(30), nullable=False, default="new")
    lead_quality = Column(String(20), default="unqualified")
    priority = Column(String(20), default="medium")
    assigned_salesperson_id = Column(Integer, ForeignKey("users.id"))
    converted_customer_id = Column(Integer, ForeignKey("customers.id"))
    lost_reason = Column(String(50))
    last_contact_date = Column(DateTime)
    next_follow_up_date = Column(DateTime)
    notes = Column(Text)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        CheckConstraint(_in_list("pipeline_stage", PIPELINE_STAGES), name="ck_lead_pipeline_stage"),
        CheckConstraint("lead_quality IN ('unqualified', 'cold', 'warm', 'hot')", name="ck_lead_quality"),
        CheckConstraint("priority IN ('low', 'medium', 'high', 'urgent')", name="ck_lead_priority"),
        Index("ix_leads_stage_salesperson", "pipeline_stage", "assigned_salesperson_id"),
        Index("ix_leads_followup", "next_follow_up_date"),
    )

    interactions = relationship("Interaction", back_populates="lead")


# ─── 5. Interactions ────────────────────────────────────────────────────────


class Interaction(Base):
    __tablename__ = "interactions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    lead_id = Column(Integer, ForeignKey("leads.id"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    interaction_type = Column(String(30), nullable=False)  # phone_call, email, sms, in_person, test_drive, ...
    interaction_direction = Column(String(10), nullable=False)
    interaction_outcome = Column(String(30))
    interaction_notes = Column(Text, nullable=False)
    follow_up_required = Column(Boolean, default=False)
    follow_up_date = Column(DateTime)
    follow_up_priority = Column(String(20), default="medium")
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        CheckConstraint("interaction_direction IN ('inbound', 'outbound')", name="ck_interaction_direction"),
        Index("ix_interactions_lead", "lead_id"),
        Index("ix_interactions_user_date", "user_id", "created_at"),
    )

    lead = relationship("Lead", back_populates="interactions")


# ─── 6-8. Operations ────────────────────────────────────────────────────────


class Appointment(Base):
    __tablename__ = "appointments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    customer_id = Column(Integer, ForeignKey("customers.id"))
    lead_id = Column(Integer, ForeignKey("leads.id"))
    vehicle_id = Column(Integer, ForeignKey("vehicles.id"))
    assigned_to_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    appointment_date = Column(DateTime, nullable=False)
    appointment_type = Column(String(30), nullable=False)  # viewing, collection, drop_off, other
    status = Column(String(20), nullable=False, default="scheduled")
    notes = Column(Text)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)


class Task(Base):
    __tablename__ = "tasks"

    id = Column(Integer, primary_key=True, autoincrement=True)
    title = Column(String(255), nullable=False)
    description = Column(Text)
    assigned_to_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    due_date = Column(DateTime)
    priority = Column(String(20), nullable=False, default="medium")
    status = Column(String(20), nullable=False, default="pending")
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)


class Job(Base):
    __tablename__ = "jobs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    job_number = Column(String(30), nullable=False, unique=True)
    job_type = Column(String(30), nullable=False)  # delivery, collection, service, mot, repair, ...
    status = Column(String(20), nullable=False, default="pending")
    vehicle_id = Column(Integer, ForeignKey("vehicles.id"))
    assigned_to_id = Column(Integer, ForeignKey("users.id"))
    scheduled_date = Column(DateTime)
    actual_cost = Column(Float)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)


# ─── 9-10. Documents ────────────────────────────────────────────────────────


class PurchaseInvoice(Base):
    __tablename__ = "purchase_invoices"

    id = Column(Integer, primary_key=True, autoincrement=True)
    vehicle_id = Column(Integer, ForeignKey("vehicles.id"))
    file_name = Column(String(255), nullable=False)
    amount = Column(Float)
    uploaded_by = Column(Integer, ForeignKey("users.id"))
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)


class SalesInvoice(Base):
    __tablename__ = "sales_invoices"

    id = Column(Integer, primary_key=True, autoincrement=True)
    vehicle_id = Column(Integer, ForeignKey("vehicles.id"))
    file_name = Column(String(255), nullable=False)
    amount = Column(Float)
    uploaded_by = Column(Integer, ForeignKey("users.id"))
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)


# ─── 11. AI Conversations ───────────────────────────────────────────────────


class AIConversation(Base):
    __tablename__ = "ai_conversations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    session_id = Column(String(64), nullable=False)
    message = Column(Text, nullable=False)
    response = Column(Text, nullable=False)
    context_used = Column(JSON, default=list)
    response_time = Column(Integer)  # milliseconds
    feedback = Column(Text)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        Index("ix_ai_conversations_user", "user_id"),
        Index("ix_ai_conversations_session", "session_id"),
        Index("ix_ai_conversations_created", "created_at"),
    )


# ─── 12. AI Memory ──────────────────────────────────────────────────────────


class AIMemory(Base):
    __tablename__ = "ai_memory"

    id = Column(Integer, primary_key=True, autoincrement=True)
    key = Column(String(255), nullable=False, unique=True)  # "entity@id" or "topic@context"
    data = Column(JSON, nullable=False)
    memory_type = Column(String(30), nullable=False)
    entity_type = Column(String(50))
    entity_id = Column(Integer)
    user_id = Column(Integer, ForeignKey("users.id"))
    priority = Column(String(20), nullable=False, default="normal")
    tags = Column(JSON, default=list)
    relevance_score = Column(Float, default=1.0)
    expires_at = Column(DateTime)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        CheckConstraint(_in_list("memory_type", MEMORY_TYPES), name="ck_ai_memory_type"),
        CheckConstraint(_in_list("priority", MEMORY_PRIORITIES), name="ck_ai_memory_priority"),
        Index("ix_ai_memory_user", "user_id"),
        Index("ix_ai_memory_relevance", "relevance_score"),
        Index("ix_ai_memory_created", "created_at"),
    )


# ─── 13. AI Insights ────────────────────────────────────────────────────────


class AIInsight(Base):
    __tablename__ = "ai_insights"

    id = Column(Integer, primary_key=True, autoincrement=True)
    insight_type = Column(String(30), nullable=False)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=False)
    data = Column(JSON)
    priority = Column(String(20), nullable=False, default="medium")
    category = Column(String(30), nullable=False)
    target_users = Column(JSON)  # list of user ids, NULL = everyone
    conditions = Column(JSON)
    is_active = Column(Boolean, nullable=False, default=True)
    is_acknowledged = Column(Boolean, nullable=False, default=False)
    acknowledged_by = Column(Integer, ForeignKey("users.id"))
    acknowledged_at = Column(DateTime)
    expires_at = Column(DateTime)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        CheckConstraint(_in_list("insight_type", INSIGHT_TYPES), name="ck_ai_insight_type"),
        CheckConstraint(_in_list("priority", INSIGHT_PRIORITIES), name="ck_ai_insight_priority"),
        CheckConstraint(_in_list("category", INSIGHT_CATEGORIES), name="ck_ai_insight_category"),
        Index("ix_ai_insights_visible", "is_active", "is_acknowledged", "expires_at"),
        Index("ix_ai_insights_created", "created_at"),
    )
