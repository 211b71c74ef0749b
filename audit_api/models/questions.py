from __future__ import annotations

from sqlalchemy import Column, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship

from .base import Base


class Chapter(Base):
    __tablename__ = "chapters"

    id = Column(Integer, primary_key=True, autoincrement=False)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)

    articles = relationship("Article", back_populates="chapter", order_by="Article.number")


class Article(Base):
    __tablename__ = "articles"

    id = Column(String, primary_key=True)
    chapter_id = Column(Integer, ForeignKey("chapters.id", ondelete="CASCADE"), nullable=False, index=True)
    number = Column(Integer, nullable=False)
    title = Column(String, nullable=False)

    chapter = relationship("Chapter", back_populates="articles")
    questions = relationship("Question", back_populates="article", order_by="Question.ref")


class Question(Base):
    __tablename__ = "questions"

    id = Column(String, primary_key=True)  # e.g. "ch2-art5-1"
    article_id = Column(String, ForeignKey("articles.id", ondelete="CASCADE"), nullable=False, index=True)
    ref = Column(String, nullable=False)
    text = Column(Text, nullable=False)

    article = relationship("Article", back_populates="questions", lazy="joined")
