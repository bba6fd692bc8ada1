from __future__ import annotations
import logging

from .errors import ValidationError
from .mailer import Mailer
from .security import create_reset_token, password_fingerprint, read_reset_token
from .settings import Settings
from .users import UserDirectory

logger = logging.getLogger(__name__)

RESET_SUBJECT = "Reset your Criteria Portal password"


class PasswordReset:
	"""Forgot-password flow: email a signed, single-use link, then accept a new password with it."""

	def __init__(self, users: UserDirectory, mailer: Mailer, settings: Settings) -> None:
		self.users = users
		self.mailer = mailer
		self.settings = settings

	def request(self, email: str) -> None:
		user = self.users.find_by_email(email)
		if user is None:
			# Same outcome either way so callers cannot tell which addresses are registered
			logger.info("Password reset requested for an unregistered address")
			return
		token = create_reset_token(user, self.settings)
		link = "%s?token=%s" % (self.settings.password_reset_url, token)
		body = (
			"Hello %s,\n\n"
			"Use the link below to choose a new password. It expires in %d minutes.\n\n"
			"%s\n\n"
			"If you did not ask for this, you can ignore this message.\n"
		) % (user.name, self.settings.reset_token_expire_minutes, link)
		self.mailer.send(user.email, RESET_SUBJECT, body)
		logger.info("Password reset link sent to user %s", user.id)

	def reset(self, token: str, new_password: str) -> None:
		user_id, fingerprint = read_reset_token(token, self.settings)
		user = self.users.get(user_id)
		if user is None or password_fingerprint(user.password_hash) != fingerprint:
			raise ValidationError("Reset link is invalid or has already been used")
		if not self.users.change_password(user.id, new_password, expected_hash=user.password_hash):
			raise ValidationError("Reset link is invalid or has already been used")
