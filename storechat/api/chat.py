from fastapi import APIRouter, Depends, HTTPException, Request
from storechat.dependencies import get_conversation_manager
from storechat.models.schemas import ChatRequest, ChatResponse, Message, ProductSummary
from storechat.services.conversation import ConversationManager

router = APIRouter(prefix="/api/chat", tags=["chat"])


@router.post("/message", response_model=ChatResponse)
async def post_message(
    body: ChatRequest,
    request: Request,
    manager: ConversationManager = Depends(get_conversation_manager),
):
    if not body.session_id.strip() or not body.message.strip():
        raise HTTPException(status_code=400, detail="Missing required fields: session_id and message")

    visitor_info = {
        "ip_address": request.client.host if request.client else None,
        "user_agent": request.headers.get("user-agent"),
    }
    result = await manager.process_message(body.session_id, body.message, visitor_info)
    return ChatResponse(
        session_id=body.session_id,
        response=result.response,
        products=[ProductSummary(**p) for p in result.products],
        intent=result.intent,
    )


@router.get("/history/{session_id}", response_model=list[Message])
async def get_history(
    session_id: str,
    manager: ConversationManager = Depends(get_conversation_manager),
):
    messages = await manager.get_history(session_id)
    return [Message(role=m["role"], content=m["content"], timestamp=m["created_at"]) for m in messages]
