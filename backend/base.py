from sqlalchemy.orm import declarative_base

class DictMixin:
    """
    Mixin providing a standardized dictionary serialization for SQLAlchemy models.
    """
    def to_dict(self, exclude=()):
        return {c.name: getattr(self, c.name) for c in self.__table__.columns if c.name not in exclude}

Base = declarative_base(cls=DictMixin)
