from __future__ import annotations
from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker, declarative_base


Base = declarative_base()


class Database:
	"""Owns the engine and session factory for one application instance.

	Nothing is connected at import time: ``open()`` builds the engine and creates
	the tables, ``close()`` disposes it. Stores receive the instance explicitly.
	"""

	def __init__(self, url: str) -> None:
		self.url = url
		self._engine: Optional[Engine] = None
		self._sessions: Optional[sessionmaker] = None

	@property
	def engine(self) -> Engine:
		if self._engine is None:
			raise RuntimeError("database is not open")
		return self._engine

	@property
	def is_open(self) -> bool:
		return self._engine is not None

	def open(self) -> None:
		if self._engine is not None:
			return
		connect_args = {"check_same_thread": False} if self.url.startswith("sqlite") else {}
		self._engine = create_engine(self.url, connect_args=connect_args, future=True)
		self._sessions = sessionmaker(
			autocommit=False, autoflush=False, expire_on_commit=False, bind=self._engine, future=True
		)
		# Import registers the mapped tables on Base.metadata
		from . import models  # noqa: F401
		Base.metadata.create_all(bind=self._engine)

	def close(self) -> None:
		if self._engine is not None:
			self._engine.dispose()
		self._engine = None
		self._sessions = None

	@contextmanager
	def session(self) -> Iterator[Session]:
		if self._sessions is None:
			raise RuntimeError("database is not open")
		db = self._sessions()
		try:
			yield db
		finally:
			db.close()

	def ping(self) -> bool:
		try:
			with self.session() as db:
				db.execute(text("SELECT 1"))
			return True
		except Exception:
			return False
