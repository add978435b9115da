from sqlalchemy import Column, Integer, String, DateTime
from sqlalchemy.sql import func
from app.db.base import Base


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    full_name = Column(String, nullable=False)
    email = Column(String, unique=True, index=True, nullable=False)
    password_hash = Column(String)
    role = Column(String, nullable=False, index=True)  # company | freelancer
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    @property
    def is_company(self) -> bool:
        return self.role == "company"

    @property
    def is_freelancer(self) -> bool:
        return self.role == "freelancer"

    def __repr__(self):
        return f"<User(id={self.id}, role='{self.role}')>"
