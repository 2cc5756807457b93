from sqlalchemy import Column, Integer, String, Text, DateTime, Float, JSON, ForeignKey
from sqlalchemy.orm import relationship
from screencast.db.database import Base
from datetime import datetime

COMMENT_TYPES = ("comment", "issue", "win", "action_item")
VIDEO_STATUSES = ("processing", "ready", "failed")


class Video(Base):
    __tablename__ = "videos"

    id = Column(Integer, primary_key=True, index=True)
    share_id = Column(String, unique=True, index=True)  # Public token used in /v/{share_id}
    title = Column(String)
    description = Column(Text, nullable=True)
    file_path = Column(String)
    thumbnail_path = Column(String, nullable=True)
    duration = Column(Integer, default=0)  # seconds
    file_size = Column(Integer, default=0)  # bytes
    views = Column(Integer, default=0)
    status = Column(String, default="processing")  # processing, ready, failed
    # "metadata" is reserved on declarative classes
    meta = Column("metadata", JSON, nullable=True)  # client_name, account_type, tags
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    comments = relationship("Comment", back_populates="video", cascade="all, delete-orphan")


class Comment(Base):
    __tablename__ = "comments"

    id = Column(Integer, primary_key=True, index=True)
    video_id = Column(Integer, ForeignKey("videos.id", ondelete="CASCADE"), index=True)
    user_name = Column(String)
    content = Column(Text)
    timestamp_seconds = Column(Float, nullable=True)
    type = Column(String, default="comment")  # comment, issue, win, action_item
    created_at = Column(DateTime, default=datetime.utcnow)

    video = relationship("Video", back_populates="comments")
