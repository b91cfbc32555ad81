from typing import Any, Dict, List

from chatcore.cache.read_through import best_effort
from chatcore.errors import ForbiddenError, NotFoundError, ValidationFailedError
from chatcore.repositories.conversation_repository import ConversationRepository
from chatcore.repositories.user_repository import UserRepository
from chatcore.schemas.conversation import ConversationView
from chatcore.utils.ids import to_object_id


class ConversationService:

    def __init__(self, conversation_repo: ConversationRepository, user_repo: UserRepository, cache) -> None:
        self._conversation_repo = conversation_repo
        self._user_repo = user_repo
        self._cache = cache

    async def get_or_create(self, user_id: str, other_user_id: str) -> ConversationView:
        """The one-to-one conversation between two users, created on first use."""
        if user_id == other_user_id:
            raise ValidationFailedError("Cannot start a conversation with yourself")
        other = await self._user_repo.get_public_profile(other_user_id)
        if other is None:
            raise NotFoundError("User not found")
        conversation = await self._conversation_repo.get_or_create([user_id, other_user_id])
        await best_effort(
            "register_conversation",
            self._cache.register_conversation(str(conversation["_id"]), conversation["participants"]),
        )
        return ConversationView.for_viewer(conversation, user_id, {other_user_id: other})

    async def list_for_user(self, user_id: str) -> List[ConversationView]:
        conversations = await self._conversation_repo.list_for_user(user_id)
        others = {uid for doc in conversations for uid in doc["participants"] if uid != user_id}
        profiles = await self._user_repo.get_public_profiles(others)
        return [ConversationView.for_viewer(doc, user_id, profiles) for doc in conversations]

    async def ensure_participant(self, conversation_id: str, user_id: str, action: str = "access") -> Dict[str, Any]:
        conversation = await self._conversation_repo.get(to_object_id(conversation_id, "Conversation"))
        if conversation is None:
            raise NotFoundError("Conversation not found")
        if user_id not in conversation["participants"]:
            raise ForbiddenError(f"Not authorized to {action} this conversation")
        return conversation
