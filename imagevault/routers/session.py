from fastapi import APIRouter, Depends

from imagevault.auth import Session, get_session
from imagevault.image_service.models import SessionInfo

router = APIRouter(tags=["session"])

@router.get("/session", response_model=SessionInfo)
def read_session(session: Session = Depends(get_session)):
    """Returns the caller's resolved session, including the admin flag."""
    return SessionInfo(email=session.email, name=session.name, is_admin=session.is_admin)
