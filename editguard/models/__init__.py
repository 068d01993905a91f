# Import all models so they register themselves on Base.metadata
from editguard.db.base import Base  # noqa: F401
from .edit_session import EditSession  # noqa: F401
from .purchase_order import PurchaseOrder  # noqa: F401
from .non_conformity import NonConformity  # noqa: F401
from .corrective_action import CorrectiveAction  # noqa: F401
