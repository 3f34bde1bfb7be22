from sqlalchemy.orm import Session

from billing.exceptions import PlanNotFound
from billing.models import Plan


class PlanCatalog:
    """Read-only view of the plan table owned by the catalog service."""

    def __init__(self, db: Session):
        self.db = db

    def get(self, plan_id: int) -> Plan:
        plan = self.db.get(Plan, plan_id)
        if plan is None:
            raise PlanNotFound(plan_id)
        return plan
