from __future__ import annotations

from sqlalchemy import select

from dashboard_etl.db.models import ChatMessage
from dashboard_etl.db.repositories.base import Repository


class ChatMessagesRepository(Repository):
    def record_exchange(self, *, session_id: str, user_message: str, assistant_message: str) -> None:
        self.session.add_all(
            [
                ChatMessage(session_id=session_id, role="user", content=user_message),
                ChatMessage(session_id=session_id, role="assistant", content=assistant_message),
            ]
        )
        self.session.commit()

    def list_for_session(self, session_id: str) -> list[ChatMessage]:
        stmt = (
            select(ChatMessage)
            .where(ChatMessage.session_id == session_id)
            .order_by(ChatMessage.created_at.asc(), ChatMessage.id.asc())
        )
        return list(self.session.scalars(stmt))
