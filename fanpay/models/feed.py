from datetime import datetime

from beanie import Document, Indexed
from pydantic import Field

from fanpay.store.types import new_id


class FeedPost(Document):
    id: str = Field(default_factory=new_id)
    title: str = ""
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "feed_posts"


class FeedComment(Document):
    post_id: Indexed(str)
    user_id: str
    content: str
    is_gift: bool = False
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "feed_comments"
