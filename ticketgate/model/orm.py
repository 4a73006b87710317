from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy import (
    Column,
    Integer,
    String,
    Float,
    Boolean,
    JSON,
    ForeignKey,
    Index,
)


Base = declarative_base()

# payment_status values
PENDING = "pending"
AWAITING_APPROVAL = "awaiting_approval"
PAID = "paid"

# ticket status values (PENDING / AWAITING_APPROVAL shared)
VALID = "valid"


# ----------------------------
# ORM models
# ----------------------------
class Inscription(Base):
    __tablename__ = "inscriptions"
    id = Column(String, primary_key=True)

    # {name, email, cpf, phone}
    main_participant = Column(JSON, nullable=False)
    additional_participants = Column(JSON, nullable=False, default=list)
    payer_email = Column(String, nullable=False, index=True)

    ticket_type = Column(String, nullable=False)
    quantity = Column(Integer, nullable=False, default=1)
    unit_price = Column(Float, nullable=False)
    total_price = Column(Float, nullable=False)
    applied_coupon = Column(String, nullable=True)
    discount_value = Column(Float, nullable=False, default=0.0)

    # pending | awaiting_approval | paid
    payment_status = Column(String, nullable=False, default=PENDING,
                            index=True)
    created_at = Column(Float, nullable=False)
    updated_at = Column(Float, nullable=True)
    mercadopago_id = Column(String, nullable=True)

    qr_code_generated = Column(Boolean, nullable=False, default=False)

    # legacy single-ticket schema: the inscription is its own ticket
    qr_code_data_url = Column(String, nullable=True)
    is_checked_in = Column(Boolean, nullable=False, default=False)
    checked_in_at = Column(Float, nullable=True)

    tickets = relationship(
        "Ticket",
        back_populates="inscription",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="Ticket.position",
    )


class Ticket(Base):
    __tablename__ = "tickets"
    inscription_id = Column(
        String,
        ForeignKey("inscriptions.id", ondelete="CASCADE"),
        primary_key=True,
    )
    id = Column(String, primary_key=True)
    position = Column(Integer, nullable=False, default=0)

    participant_name = Column(String, nullable=False)
    ticket_type = Column(String, nullable=False)
    # pending | awaiting_approval | valid
    status = Column(String, nullable=False, default=PENDING)
    qr_code_data_url = Column(String, nullable=True)

    is_checked_in = Column(Boolean, nullable=False, default=False)
    checked_in_at = Column(Float, nullable=True)

    inscription = relationship("Inscription", back_populates="tickets")

    __table_args__ = (
        # exhaustive lookup by bare ticket id
        Index("ix_tickets_id", "id"),
    )


class Coupon(Base):
    __tablename__ = "coupons"
    code = Column(String, primary_key=True)  # uppercase
    type = Column(String, nullable=False)    # percentage | fixed
    value = Column(Float, nullable=False)


class CheckinEntry(Base):
    __tablename__ = "checkins"
    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False)
    type = Column(String, nullable=False)
    time = Column(Float, nullable=False, index=True)
    contact = Column(String, nullable=True)
    inscription_id = Column(String, nullable=True)
    ticket_id = Column(String, nullable=True)
