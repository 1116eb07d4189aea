"""Pending SAML requests kept between the SSO redirect and the user choice

This IdP never persists user sessions: every SSO request shows the chooser,
so the only state is the request waiting for the operator to pick a user.
"""
import logging
import typing
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from os import urandom

from saml_test_idp.locks import ReadWriteLock
from saml_test_idp.registry import IdentityDescriptor

logger = logging.getLogger(__name__)

PENDING_REQUEST_TTL = 10        # minutes
TOKEN_SIZE = 16                 # bytes, hex encoded


def utcnow() -> datetime:
	return datetime.now(timezone.utc)


def create_token() -> str:
	return urandom(TOKEN_SIZE).hex()


@dataclass(frozen=True)
class PendingEntry(object):
	token: str
	descriptor: IdentityDescriptor
	created: datetime
	expires: datetime
	request_handle: typing.Any


class PendingRequestStore(object):
	def __init__(self, lifetime: timedelta = timedelta(minutes=PENDING_REQUEST_TTL),
	             clock: typing.Callable[[], datetime] = utcnow):
		self.lifetime = lifetime
		self.clock = clock

		self._lock = ReadWriteLock()
		self._entries: typing.Dict[str, PendingEntry] = {}

	def create(self, descriptor: IdentityDescriptor, request_handle,
	           lifetime: typing.Optional[timedelta] = None) -> str:
		now = self.clock()
		if lifetime is None:
			lifetime = self.lifetime

		with self._lock.write_locked():
			token = create_token()
			while token in self._entries:
				token = create_token()
			self._entries[token] = PendingEntry(
				token=token,
				descriptor=descriptor,
				created=now,
				expires=now + lifetime,
				request_handle=request_handle
			)

		logger.debug("Stored pending request for %s", descriptor.entity_id)
		return token

	def get(self, token: str) -> typing.Optional[PendingEntry]:
		with self._lock.read_locked():
			entry = self._entries.get(token)

		if entry is None or entry.request_handle is None:
			return None
		if self.clock() >= entry.expires:
			return None
		return entry

	def consume(self, token: str) -> bool:
		"""Removes a pending request, absent tokens are ignored
		:param token:
		:return: whether an entry was removed
		"""
		with self._lock.write_locked():
			return self._entries.pop(token, None) is not None

	def sweep(self) -> int:
		now = self.clock()
		with self._lock.write_locked():
			expired = [token for token, entry in self._entries.items() if now >= entry.expires]
			for token in expired:
				del self._entries[token]

		if expired:
			logger.debug("Evicted %d expired pending requests", len(expired))
		return len(expired)

	def __len__(self):
		with self._lock.read_locked():
			return len(self._entries)
