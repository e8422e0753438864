from enum import Enum


class Role(str, Enum):
    DRIVER = "driver"
    ADMIN = "admin"


class SubscriptionTier(str, Enum):
    FREE = "free"
    PRO = "pro"
    SMALL_FLEET = "small_fleet"
    FLEET = "fleet"
    ENTERPRISE = "enterprise"


class BillingInterval(str, Enum):
    MONTHLY = "monthly"
    ANNUAL = "annual"


class EventStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    INVOICED = "invoiced"
    PAID = "paid"


class EventType(str, Enum):
    PICKUP = "pickup"
    DELIVERY = "delivery"


class PhotoCategory(str, Enum):
    DOCK = "dock"
    BOL = "bol"
    CONDITIONS = "conditions"
    CHECKIN = "checkin"
    OTHER = "other"


class InvoiceStatus(str, Enum):
    DRAFT = "draft"
    SENT = "sent"
    PAID = "paid"
    PARTIALLY_PAID = "partially_paid"


class EmailType(str, Enum):
    INITIAL = "initial"
    REMINDER = "reminder"
    FOLLOW_UP = "follow_up"


class EmailStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


class SubscriptionStatus(str, Enum):
    TRIALING = "trialing"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    INCOMPLETE = "incomplete"
