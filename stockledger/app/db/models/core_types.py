import enum

class Role(str, enum.Enum):
    operator = "OPERATOR"
    supervisor = "SUPERVISOR"
    admin = "ADMIN"
    procurement = "PROCUREMENT"

class LocationType(str, enum.Enum):
    kitchen = "KITCHEN"
    store = "STORE"
    central = "CENTRAL"
    warehouse = "WAREHOUSE"

class CostCentre(str, enum.Enum):
    food = "FOOD"
    clean = "CLEAN"
    other = "OTHER"

class PeriodStatus(str, enum.Enum):
    draft = "DRAFT"
    open = "OPEN"
    closed = "CLOSED"

class PeriodLocationStatus(str, enum.Enum):
    open = "OPEN"
    ready = "READY"
    closed = "CLOSED"

class SnapshotKind(str, enum.Enum):
    opening = "OPENING"
    closing = "CLOSING"

class DeliveryStatus(str, enum.Enum):
    draft = "DRAFT"
    pending_approval = "PENDING_APPROVAL"
    posted = "POSTED"
    rejected = "REJECTED"

class OverDeliveryState(str, enum.Enum):
    none = "NONE"
    pending = "PENDING"
    approved = "APPROVED"
    rejected = "REJECTED"

class IssueStatus(str, enum.Enum):
    posted = "POSTED"

class TransferStatus(str, enum.Enum):
    draft = "DRAFT"
    pending_approval = "PENDING_APPROVAL"
    approved = "APPROVED"
    rejected = "REJECTED"
    completed = "COMPLETED"

class PRFStatus(str, enum.Enum):
    draft = "DRAFT"
    pending = "PENDING"
    approved = "APPROVED"
    rejected = "REJECTED"
    closed = "CLOSED"

class POStatus(str, enum.Enum):
    open = "OPEN"
    closed = "CLOSED"

class NCRType(str, enum.Enum):
    manual = "MANUAL"
    price_variance = "PRICE_VARIANCE"

class NCRStatus(str, enum.Enum):
    open = "OPEN"
    sent = "SENT"
    credited = "CREDITED"
    rejected = "REJECTED"
    resolved = "RESOLVED"

class ApprovalEntityType(str, enum.Enum):
    prf = "PRF"
    po = "PO"
    transfer = "TRANSFER"
    over_delivery = "OVER_DELIVERY"

class ApprovalStatus(str, enum.Enum):
    pending = "PENDING"
    approved = "APPROVED"
    rejected = "REJECTED"

class DocumentState(str, enum.Enum):
    """Single derived status exposed for any approvable document."""
    draft = "DRAFT"
    pending_approval = "PENDING_APPROVAL"
    approved = "APPROVED"
    rejected = "REJECTED"
    posted = "POSTED"
