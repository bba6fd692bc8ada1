from __future__ import annotations
import logging

from .settings import Settings

logger = logging.getLogger(__name__)


class Mailer:
	def send(self, to: str, subject: str, body: str) -> None:
		raise NotImplementedError


class LoggingMailer(Mailer):
	"""Writes outgoing mail to the log instead of delivering it."""

	def __init__(self, sender: str) -> None:
		self.sender = sender

	def send(self, to: str, subject: str, body: str) -> None:
		logger.info("Mail from %s to %s: %s\n%s", self.sender, to, subject, body)


def build_mailer(settings: Settings) -> Mailer:
	backend = (settings.mail_backend or "log").strip().lower()
	if backend == "log":
		return LoggingMailer(settings.mail_from)
	raise ValueError("Unknown MAIL_BACKEND %r" % settings.mail_backend)
