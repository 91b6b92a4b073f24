"""Import every ORM module so ``Base.metadata`` is complete for create_all and Alembic."""

from wa_dashboard.domain.agents import db_models as agents_db_models  # noqa: F401
from wa_dashboard.domain.broadcasts import db_models as broadcasts_db_models  # noqa: F401
from wa_dashboard.domain.contacts import db_models as contacts_db_models  # noqa: F401
from wa_dashboard.domain.messages import db_models as messages_db_models  # noqa: F401
from wa_dashboard.domain.ops import db_models as ops_db_models  # noqa: F401
from wa_dashboard.domain.segments import db_models as segments_db_models  # noqa: F401
from wa_dashboard.domain.workflows import db_models as workflows_db_models  # noqa: F401
