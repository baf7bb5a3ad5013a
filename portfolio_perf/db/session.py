from __future__ import annotations

import os
from pathlib import Path

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from portfolio_perf.db.models import Base

DEFAULT_DATABASE_URL = "sqlite:///./data/portfolio_perf.db"


def get_database_url(default: str | None = None) -> str:
    return os.environ.get("DATABASE_URL", default or DEFAULT_DATABASE_URL)


_ENGINES: dict[str, Engine] = {}


def get_engine(url: str | None = None) -> Engine:
    url = url or get_database_url()
    engine = _ENGINES.get(url)
    if engine is not None:
        return engine
    if url.startswith("sqlite:///") and ":memory:" not in url:
        Path(url[len("sqlite:///"):]).parent.mkdir(parents=True, exist_ok=True)
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    engine = create_engine(url, future=True, connect_args=connect_args)
    Base.metadata.create_all(bind=engine)
    _ENGINES[url] = engine
    return engine


def get_session(url: str | None = None) -> Session:
    SessionLocal = sessionmaker(bind=get_engine(url), class_=Session, autoflush=False, autocommit=False)
    return SessionLocal()
