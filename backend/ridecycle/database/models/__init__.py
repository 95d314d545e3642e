"""
Database models package initialization.

Importing this package registers every model with ``Base.metadata`` for
table creation and Alembic autogeneration.
"""

from ridecycle.database.base import Base, BaseModel
from ridecycle.database.models.bicycle import Bicycle, BicycleStatus
from ridecycle.database.models.message import Message, OfferStatus
from ridecycle.database.models.order import Order
from ridecycle.database.models.payment import OrderPayment, PaymentProof
from ridecycle.database.models.user import User, UserRole

__all__ = [
    "Base",
    "BaseModel",
    "Bicycle",
    "BicycleStatus",
    "Message",
    "OfferStatus",
    "Order",
    "OrderPayment",
    "PaymentProof",
    "User",
    "UserRole",
]
