from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from .. import models, schemas
from ..core.dependencies import get_current_user, get_two_factor_manager
from ..database import get_db
from ..services.two_factor import TwoFactorManager, qr_code_data_url
from .auth import ok

router = APIRouter()


@router.post("/setup")
def setup_two_factor(
        current_user: models.User = Depends(get_current_user),
        db: Session = Depends(get_db),
        two_factor: TwoFactorManager = Depends(get_two_factor_manager),
):
    secret, uri = two_factor.setup(db, current_user)
    return ok({"secret": secret, "otpauthUrl": uri, "qrCode": qr_code_data_url(uri)})


@router.post("/verify")
def confirm_two_factor(
        data: schemas.TwoFactorVerify,
        current_user: models.User = Depends(get_current_user),
        db: Session = Depends(get_db),
        two_factor: TwoFactorManager = Depends(get_two_factor_manager),
):
    codes = two_factor.confirm_enable(db, current_user, data.token)
    return ok({"message": "Two-factor authentication enabled", "backupCodes": codes})


@router.post("/disable")
def disable_two_factor(
        data: schemas.TwoFactorDisable,
        current_user: models.User = Depends(get_current_user),
        db: Session = Depends(get_db),
        two_factor: TwoFactorManager = Depends(get_two_factor_manager),
):
    two_factor.disable(db, current_user, data.password, data.token)
    return ok({"message": "Two-factor authentication disabled"})


@router.get("/status")
def two_factor_status(
        current_user: models.User = Depends(get_current_user),
        db: Session = Depends(get_db),
        two_factor: TwoFactorManager = Depends(get_two_factor_manager),
):
    return ok(two_factor.status(db, current_user))


@router.post("/backup-codes")
def regenerate_backup_codes(
        data: schemas.PasswordConfirm,
        current_user: models.User = Depends(get_current_user),
        db: Session = Depends(get_db),
        two_factor: TwoFactorManager = Depends(get_two_factor_manager),
):
    codes = two_factor.regenerate_backup_codes(db, current_user, data.password)
    return ok({"backupCodes": codes})
