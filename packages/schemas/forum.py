"""Forum schemas for posts, replies and the request bodies that create them.

Field names on the wire are camelCase with `_id` identifiers; Python code uses
snake_case attributes (`populate_by_name`).
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field

ANONYMOUS = "Anonymous"


class _Wire(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        """JSON-ready dict using the wire (alias) field names."""
        return self.model_dump(mode="json", by_alias=True)


class Reply(_Wire):
    """A response attached to exactly one post."""
    id: str = Field(alias="_id")
    content: str
    author: str = ANONYMOUS
    post_id: str = Field(alias="postId")
    created_at: datetime = Field(alias="createdAt")
    is_answer: bool = Field(default=False, alias="isAnswer")


class Post(_Wire):
    """A top-level discussion topic with its replies inlined in creation order."""
    id: str = Field(alias="_id")
    title: str
    content: str
    author: str = ANONYMOUS
    votes: int = 0
    created_at: datetime = Field(alias="createdAt")
    is_answered: bool = Field(default=False, alias="isAnswered")
    replies: List[Reply] = []


# Request bodies stay permissive so that missing/empty fields reach the
# handlers and are reported as `ValidationError`, not as a schema mismatch.

class PostCreate(_Wire):
    title: Optional[str] = None
    content: Optional[str] = None
    author: Optional[str] = None


class ReplyCreate(_Wire):
    content: Optional[str] = None
    author: Optional[str] = None


class AnswerRequest(_Wire):
    reply_id: Optional[str] = Field(default=None, alias="replyId")
