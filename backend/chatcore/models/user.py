from typing import Optional, TypedDict


class UserProfileDocument(TypedDict, total=False):
    name: Optional[str]
    avatar: Optional[str]


class UserDocument(TypedDict, total=False):
    # owned by the identity service; read-only here
    _id: str
    username: str
    user_type: Optional[str]
    profile: UserProfileDocument
