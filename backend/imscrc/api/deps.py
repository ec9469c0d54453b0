from collections.abc import Callable, Generator
from dataclasses import dataclass
from datetime import datetime, timezone

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from sqlalchemy.orm import Session

from imscrc.core.exceptions import ResourceNotFoundError
from imscrc.core.security import decode_token
from imscrc.db.session import SessionLocal
from imscrc.models.facility import Facility
from imscrc.models.pdl import PDL
from imscrc.services.conflict_detection import ConflictDetectionService

security = HTTPBearer()


@dataclass(frozen=True)
class CurrentUser:
    """Caller identity taken from the bearer token; accounts live outside this service."""

    id: str
    name: str | None = None


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_current_user(credentials: HTTPAuthorizationCredentials = Depends(security)) -> CurrentUser:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        payload = decode_token(credentials.credentials)
    except JWTError as exc:
        raise credentials_exception from exc

    user_id = payload.get("sub")
    if not user_id:
        raise credentials_exception
    return CurrentUser(id=str(user_id), name=payload.get("name"))


def get_conflict_service(db: Session = Depends(get_db)) -> ConflictDetectionService:
    return ConflictDetectionService.for_session(db)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def get_clock() -> Callable[[], datetime]:
    return _utc_now


def ensure_references(db: Session, pdl_id: str | None, facility_id: str | None) -> None:
    """Raise 404 when a given PDL or facility id does not exist."""
    if pdl_id is not None and db.get(PDL, pdl_id) is None:
        raise ResourceNotFoundError("PDL", pdl_id)
    if facility_id is not None and db.get(Facility, facility_id) is None:
        raise ResourceNotFoundError("Facility", facility_id)
