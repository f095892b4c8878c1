from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from ...api import deps
from ...db.session import get_db
from ...db import models, schemas
from ...services.penalty_service import RollingWindowPenaltyPolicy

router = APIRouter(prefix="/users", tags=["users"])


@router.get("/me/penalty-status", response_model=schemas.PenaltyStatus)
def get_penalty_status(
    db: Session = Depends(get_db),
    user: models.User = Depends(deps.get_current_user),
):
    penalty_until = RollingWindowPenaltyPolicy(db).penalized_until(user.id)
    return {"penalty_until": penalty_until, "is_penalized": penalty_until is not None}
