# Importe tous les modèles pour enregistrer leurs tables dans Base.metadata
# avant que SQLAlchemy tente de résoudre les clés étrangères inter-modèles.
# Sans cet import, les FK comme passes.visitor_id → visitors.id échouent
# avec NoReferencedTableError si visitor.py n'est pas chargé avant visitor_pass.py.

from app.models.user import User  # noqa: F401 (doit précéder les autres)
from app.models.visitor import Visitor  # noqa: F401
from app.models.appointment import Appointment  # noqa: F401
from app.models.visitor_pass import Pass  # noqa: F401
from app.models.check_log import CheckLog  # noqa: F401
