# -*- coding: utf-8 -*-
"""Async engine, session factory and declarative base."""
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from app_entregas.core import config

engine = create_async_engine(
    config.SQLALCHEMY_DATABASE_URL,
    echo=False,
    future=True,
)

SessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    autocommit=False,
    autoflush=False,
    expire_on_commit=False,
)

Base = declarative_base()


class BaseModel(Base):
    """Base class for every table of the service."""
    __abstract__ = True
