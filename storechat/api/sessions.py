from fastapi import APIRouter, Depends, HTTPException, Query
from storechat.dependencies import get_db_path, get_session_store
from storechat.models.database import list_sessions
from storechat.models.schemas import Message, SessionDetail, SessionInfo
from storechat.services.session_store import SessionStore

router = APIRouter(prefix="/api/sessions", tags=["sessions"])


@router.get("", response_model=list[SessionInfo])
async def list_all_sessions(
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    db_path: str = Depends(get_db_path),
):
    sessions = await list_sessions(db_path, limit=limit, offset=offset)
    return [
        SessionInfo(
            session_id=s["id"],
            created_at=s["created_at"],
            message_count=s["message_count"],
            last_active=s["updated_at"],
        )
        for s in sessions
    ]


@router.get("/{session_id}", response_model=SessionDetail)
async def get_session_detail(
    session_id: str,
    store: SessionStore = Depends(get_session_store),
):
    session = await store.get(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Session not found")

    messages = await store.get_history(session_id)
    return SessionDetail(
        session_id=session["id"],
        created_at=session["created_at"],
        status=session["status"],
        visitor_info=session["visitor_info"],
        attributes=session["attributes"],
        products_viewed=await store.viewed_products(session_id),
        total_products_shown=session["total_products_shown"],
        messages=[Message(role=m["role"], content=m["content"], timestamp=m["created_at"]) for m in messages],
    )


@router.delete("/{session_id}", status_code=204)
async def delete_session(
    session_id: str,
    store: SessionStore = Depends(get_session_store),
):
    async with store.lock(session_id):
        removed = await store.clear(session_id)
    if not removed:
        raise HTTPException(status_code=404, detail="Session not found")
