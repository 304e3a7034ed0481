# Importe tous les modèles pour enregistrer leurs tables dans Base.metadata
# avant que SQLAlchemy tente de résoudre les clés étrangères inter-modèles.
# Sans cet import, les FK comme attendance_records.entitlement_id → entitlements.id
# échouent avec NoReferencedTableError si entitlement.py n'est pas chargé avant.

from messtrack.models.service_point import ServicePoint  # noqa: F401  (doit précéder les autres)
from messtrack.models.entitlement import Entitlement, MealConfirmation  # noqa: F401
from messtrack.models.credential import EnrolledCredential  # noqa: F401
from messtrack.models.attendance import AttendanceRecord  # noqa: F401
