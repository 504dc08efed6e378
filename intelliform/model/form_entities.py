import uuid
from datetime import datetime
from enum import Enum

from sqlalchemy import Column, Integer, String, Text, DateTime, Enum as SQLEnum, ForeignKey, JSON, Boolean
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


class ExtractionStatus(Enum):
    """Problem extraction status enumeration"""
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class SessionStatus(Enum):
    """Conversation session status enumeration"""
    ACTIVE = "ACTIVE"
    SUBMITTED = "SUBMITTED"


class Form(Base):
    """Form definition owned by one user"""
    __tablename__ = 'forms'

    form_id = Column(String(50), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(50), nullable=False, index=True, comment="Owner user ID")
    title = Column(String(200), nullable=False, comment="Form title")
    description = Column(Text, nullable=True, comment="Form description")
    fields = Column(JSON, nullable=False, default=list, comment="Ordered field definitions")
    settings = Column(JSON, nullable=False, default=dict, comment="Theme and presentation settings")
    is_published = Column(Boolean, nullable=False, default=False, comment="Accepting responses")
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    submissions = relationship("Submission", back_populates="form", cascade="all, delete-orphan")
    sessions = relationship("ConversationSession", back_populates="form", cascade="all, delete-orphan")


class Submission(Base):
    """One completed response to a form"""
    __tablename__ = 'submissions'

    submission_id = Column(String(50), primary_key=True, default=lambda: str(uuid.uuid4()))
    form_id = Column(String(50), ForeignKey('forms.form_id'), nullable=False, index=True)
    data = Column(JSON, nullable=False, default=dict, comment="fieldId -> answer")
    completed_at = Column(DateTime, default=datetime.utcnow)
    time_taken = Column(Integer, nullable=True, comment="Seconds spent filling the form")
    ip_address = Column(String(64), nullable=True)
    extraction_status = Column(SQLEnum(ExtractionStatus), default=ExtractionStatus.PENDING,
                               comment="Problem extraction state (PENDING, COMPLETED, FAILED)")
    extraction_error = Column(Text, nullable=True, comment="Last extraction failure")

    form = relationship("Form", back_populates="submissions")
    problems = relationship("SubmissionProblem", back_populates="submission",
                            cascade="all, delete-orphan", order_by="SubmissionProblem.created_at")
    ai_conversations = relationship("AIConversation", back_populates="submission",
                                    cascade="all, delete-orphan")


class SubmissionProblem(Base):
    """A discrete problem the AI found in one submission"""
    __tablename__ = 'submission_problems'

    problem_id = Column(String(50), primary_key=True, default=lambda: str(uuid.uuid4()))
    submission_id = Column(String(50), ForeignKey('submissions.submission_id'), nullable=False, index=True)
    problem = Column(Text, nullable=False)
    solutions = Column(JSON, nullable=False, default=list)
    resolved = Column(Boolean, nullable=False, default=False)
    resolution_comment = Column(Text, nullable=True)
    resolved_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    submission = relationship("Submission", back_populates="problems")


class AIConversation(Base):
    """Finalized AI sub-conversation for one field of a submission"""
    __tablename__ = 'ai_conversations'

    conversation_id = Column(String(50), primary_key=True, default=lambda: str(uuid.uuid4()))
    submission_id = Column(String(50), ForeignKey('submissions.submission_id'), nullable=False, index=True)
    field_id = Column(String(100), nullable=False)
    messages = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime, default=datetime.utcnow)

    submission = relationship("Submission", back_populates="ai_conversations")


class ConversationSession(Base):
    """Persisted state of one respondent's conversational sequence"""
    __tablename__ = 'conversation_sessions'

    session_id = Column(String(50), primary_key=True, default=lambda: str(uuid.uuid4()))
    form_id = Column(String(50), ForeignKey('forms.form_id'), nullable=False, index=True)
    status = Column(SQLEnum(SessionStatus), default=SessionStatus.ACTIVE)
    state = Column(JSON, nullable=False, default=dict, comment="Serialized sequencer state")
    submission_id = Column(String(50), nullable=True)
    ip_address = Column(String(64), nullable=True)
    version = Column(Integer, nullable=False, default=0, comment="Bumped on every state save")
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    form = relationship("Form", back_populates="sessions")
