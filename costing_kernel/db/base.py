"""
Module: costing_kernel.db.base
Responsibility: Declarative base class for all SQLAlchemy ORM models.  Provides
    the integer identity primary key convention and the type annotation map
    for consistent column types.
Architecture position: Kernel > DB.  This is the lowest-level import target
    within the kernel.  ALL model files import from here.  This module MUST NOT
    import from models/, services/, domain/, or outer layers.

Invariants enforced:
    - Insertion-ordered identity keys: every row gets a monotonically
      increasing integer id.  Layer ids double as the deterministic FIFO
      tie-break when two layers share an entry date, so they MUST reflect
      insertion order.
    - Decimal precision: type_annotation_map maps Python Decimal to
      Numeric(38, 9).  NEVER use float for quantities or costs.

Failure modes:
    - IntegrityError if a model attempts to INSERT a duplicate id.

Audit relevance:
    Integer ids are the keys every ledger row is addressed by;
    consumption records reference layers and sale lines only by id.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import ClassVar

from sqlalchemy import BigInteger, Date, DateTime, Integer, Numeric
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# SQLite only autoincrements columns declared exactly as INTEGER PRIMARY KEY.
IdentityKey = BigInteger().with_variant(Integer(), "sqlite")


class Base(DeclarativeBase):
    """
    Declarative base for all SQLAlchemy models.

    Contract:
        Every ORM model in the system inherits from Base.  Base provides an
        integer identity primary key and a type_annotation_map that enforces
        consistent column types across the entire schema.

    Guarantees:
        - id is assigned by the database in insertion order.
        - Decimal maps to Numeric(38, 9).
        - datetime maps to DateTime(timezone=True).
    """

    type_annotation_map: ClassVar[dict] = {
        # Cost precision: 38 digits total, 9 decimal places
        Decimal: Numeric(38, 9),
        datetime: DateTime(timezone=True),
        date: Date,
        int: BigInteger,
    }

    id: Mapped[int] = mapped_column(
        IdentityKey,
        primary_key=True,
        autoincrement=True,
    )
