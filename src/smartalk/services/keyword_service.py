"""Service for managing the keyword catalogue."""
from typing import List, Optional

from sqlalchemy.orm import Session

from smartalk.models.models import Keyword


class KeywordService:
    """Service for managing keywords and their topics."""

    def __init__(self, db: Session):
        """Initialize the service with a database session."""
        self.db = db

    def get_keyword(self, keyword_id: str) -> Optional[Keyword]:
        """Get a keyword by its ID."""
        return self.db.get(Keyword, keyword_id)

    def add_keyword(
        self,
        keyword_id: str,
        text: str,
        topic: str,
        translation: Optional[str] = None,
        image_url: Optional[str] = None,
        audio_url: Optional[str] = None,
    ) -> Keyword:
        """Create a keyword or update the existing one."""
        keyword = self.get_keyword(keyword_id)
        if keyword is None:
            keyword = Keyword(id=keyword_id)
            self.db.add(keyword)

        keyword.text = text
        keyword.topic = topic
        keyword.translation = translation
        keyword.image_url = image_url
        keyword.audio_url = audio_url

        self.db.commit()
        self.db.refresh(keyword)
        return keyword

    def get_topic_keywords(self, topic: str, exclude_id: Optional[str] = None) -> List[Keyword]:
        """Get the keywords of a topic ordered by ID."""
        query = self.db.query(Keyword).filter(Keyword.topic == topic)
        if exclude_id is not None:
            query = query.filter(Keyword.id != exclude_id)
        return query.order_by(Keyword.id).all()

    def get_topics(self) -> List[str]:
        """Get all topics in the catalogue."""
        return [topic for (topic,) in self.db.query(Keyword.topic).distinct().order_by(Keyword.topic)]

    def delete_keyword(self, keyword_id: str) -> bool:
        """Delete a keyword."""
        keyword = self.get_keyword(keyword_id)
        if not keyword:
            return False

        self.db.delete(keyword)
        self.db.commit()
        return True
