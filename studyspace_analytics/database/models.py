"""
Database Models - Branch Fact Schema

Relational layout backing SqlDataStore. Facts are stored per branch so every
analytics read is a bounded, branch-scoped range query.

Fact Tables:
- FactDailyVisit: One row per customer-day of presence with resource flags
- FactPurchase: Ticket purchases
- FactDailyRevenue: Total revenue per branch-day

Dimension Tables:
- DimBranch: Branch profile used for similar-branch fallback
- DimCustomer: Per-branch customer visit summary
- DimExternalFactor: Exam periods, vacations, holidays
"""

from datetime import date, datetime
from typing import List, Optional

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all database models"""
    pass


# =============================================================================
# DIMENSION TABLES
# =============================================================================

class DimBranch(Base):
    """
    Branch Dimension Table

    One row per study-space branch with the attributes used to score
    branch similarity.
    """
    __tablename__ = "dim_branches"

    branch_id: Mapped[str] = mapped_column(String(50), primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    region: Mapped[Optional[str]] = mapped_column(String(100))
    size: Mapped[Optional[str]] = mapped_column(String(20))  # small, medium, large
    target_audience: Mapped[Optional[str]] = mapped_column(String(50))

    created_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now()
    )

    customers: Mapped[List["DimCustomer"]] = relationship(back_populates="branch")

    __table_args__ = (
        Index("ix_dim_branches_region", "region"),
    )


class DimCustomer(Base):
    """
    Customer Dimension Table

    Denormalized visit summary of one customer at one branch.
    """
    __tablename__ = "dim_customers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    branch_id: Mapped[str] = mapped_column(
        ForeignKey("dim_branches.branch_id"), nullable=False
    )
    customer_id: Mapped[str] = mapped_column(String(50), nullable=False)
    first_visit_date: Mapped[date] = mapped_column(Date, nullable=False)
    last_visit_date: Mapped[Optional[date]] = mapped_column(Date)

    branch: Mapped["DimBranch"] = relationship(back_populates="customers")

    __table_args__ = (
        UniqueConstraint("branch_id", "customer_id", name="uq_dim_customers_branch_customer"),
        Index("ix_dim_customers_first_visit", "branch_id", "first_visit_date"),
    )


class DimExternalFactor(Base):
    """
    External Factor Dimension Table

    Occurrences of events outside the business's control. A null branch_id
    applies the occurrence to every branch.
    """
    __tablename__ = "dim_external_factors"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    branch_id: Mapped[Optional[str]] = mapped_column(ForeignKey("dim_branches.branch_id"))
    factor_type: Mapped[str] = mapped_column(String(50), nullable=False)  # exam, vacation, holiday
    name: Mapped[str] = mapped_column(String(200), default="")
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)

    __table_args__ = (
        Index("ix_dim_external_factors_type_end", "factor_type", "end_date"),
    )


# =============================================================================
# FACT TABLES
# =============================================================================

class FactDailyVisit(Base):
    """
    Daily Visit Fact Table

    One row per customer-day of physical presence. Resource flags describe
    what the customer held on that day.
    """
    __tablename__ = "fact_daily_visits"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    branch_id: Mapped[str] = mapped_column(
        ForeignKey("dim_branches.branch_id"), nullable=False
    )
    customer_id: Mapped[str] = mapped_column(String(50), nullable=False)
    visit_date: Mapped[date] = mapped_column(Date, nullable=False)

    has_remaining_term_ticket: Mapped[bool] = mapped_column(Boolean, default=False)
    has_remaining_time_package: Mapped[bool] = mapped_column(Boolean, default=False)
    has_remaining_fixed_seat: Mapped[bool] = mapped_column(Boolean, default=False)

    __table_args__ = (
        UniqueConstraint(
            "branch_id", "customer_id", "visit_date", name="uq_fact_daily_visits_customer_day"
        ),
        Index("ix_fact_daily_visits_branch_date", "branch_id", "visit_date"),
    )


class FactPurchase(Base):
    """
    Purchase Fact Table

    One row per ticket purchase.
    """
    __tablename__ = "fact_purchases"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    branch_id: Mapped[str] = mapped_column(
        ForeignKey("dim_branches.branch_id"), nullable=False
    )
    customer_id: Mapped[str] = mapped_column(String(50), nullable=False)
    purchase_date: Mapped[date] = mapped_column(Date, nullable=False)
    ticket_name: Mapped[str] = mapped_column(String(200), nullable=False)
    amount: Mapped[float] = mapped_column(Numeric(12, 2, asdecimal=False), nullable=False)

    __table_args__ = (
        Index("ix_fact_purchases_branch_date", "branch_id", "purchase_date"),
        Index("ix_fact_purchases_customer", "branch_id", "customer_id"),
    )


class FactDailyRevenue(Base):
    """
    Daily Revenue Fact Table

    Total revenue of one branch on one calendar day.
    """
    __tablename__ = "fact_daily_revenue"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    branch_id: Mapped[str] = mapped_column(
        ForeignKey("dim_branches.branch_id"), nullable=False
    )
    revenue_date: Mapped[date] = mapped_column(Date, nullable=False)
    total_revenue: Mapped[float] = mapped_column(Numeric(14, 2, asdecimal=False), default=0)

    __table_args__ = (
        UniqueConstraint("branch_id", "revenue_date", name="uq_fact_daily_revenue_branch_day"),
    )
