"""
Identity resolution: link an (email, phone) observation to the contact
cluster it belongs to.

A cluster is one primary contact plus every secondary that links to it.
Resolving an observation finds every cluster it touches, merges them under
the oldest primary when there is more than one, and appends a secondary when
the observation carries an email or phone the cluster has not seen yet. All
reads and writes for one observation run inside a single
``ContactStore.run_atomically`` call; conflicts with concurrent resolutions
restart the whole sequence.
"""

import logging
import time
from dataclasses import dataclass

from django.conf import settings

from .exceptions import ConflictError, InvalidInputError, ResolutionRetryExhaustedError
from .integrity import check_cluster, check_link_target, root_id_of
from .models import Contact
from .store import ContactStore

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_RETRY_BACKOFF_SECONDS = 0.05


def normalize_email(email):
    if email is None:
        return None
    if not isinstance(email, str):
        raise InvalidInputError("email must be a string.")
    return email or None


def normalize_phone(phone):
    """Return the stored form of a phone number; numbers become digit strings."""
    if phone is None or phone == "":
        return None
    if isinstance(phone, bool):
        raise InvalidInputError("phoneNumber must be a number or a string.")
    if isinstance(phone, int):
        return str(phone)
    if isinstance(phone, float):
        if not phone.is_integer():
            raise InvalidInputError("phoneNumber must be a whole number.")
        return str(int(phone))
    if isinstance(phone, str):
        return phone
    raise InvalidInputError("phoneNumber must be a number or a string.")


@dataclass(frozen=True)
class ConsolidatedContact:
    primary_contact_id: int
    emails: tuple
    phone_numbers: tuple
    secondary_contact_ids: tuple

    def to_dict(self):
        return {
            "contact": {
                "primaryContactId": self.primary_contact_id,
                "emails": list(self.emails),
                "phoneNumbers": list(self.phone_numbers),
                "secondaryContactIds": list(self.secondary_contact_ids),
            }
        }


def consolidate(primary, secondaries):
    """
    Build the consolidated view of a cluster.

    The primary's email and phone come first, then those of the secondaries
    from oldest to newest, each list without duplicates.
    """
    ordered = sorted(secondaries, key=lambda c: c.seniority)
    contacts = [primary, *ordered]
    return ConsolidatedContact(
        primary_contact_id=primary.id,
        emails=tuple(dict.fromkeys(c.email for c in contacts if c.email is not None)),
        phone_numbers=tuple(
            dict.fromkeys(c.phone_number for c in contacts if c.phone_number is not None)
        ),
        secondary_contact_ids=tuple(c.id for c in ordered),
    )


class IdentityResolver:
    def __init__(self, store=None, max_attempts=None, retry_backoff_seconds=None):
        config = getattr(settings, "IDENTITY_RESOLUTION", {})
        self.store = store if store is not None else ContactStore()
        if max_attempts is None:
            max_attempts = config.get("MAX_ATTEMPTS", DEFAULT_MAX_ATTEMPTS)
        if retry_backoff_seconds is None:
            retry_backoff_seconds = config.get(
                "RETRY_BACKOFF_SECONDS", DEFAULT_RETRY_BACKOFF_SECONDS
            )
        self.max_attempts = max(1, int(max_attempts))
        self.retry_backoff_seconds = max(0.0, float(retry_backoff_seconds))

    def resolve(self, email=None, phone=None):
        email = normalize_email(email)
        phone = normalize_phone(phone)
        if email is None and phone is None:
            raise InvalidInputError()

        for attempt in range(1, self.max_attempts + 1):
            try:
                return self.store.run_atomically(lambda: self._resolve_once(email, phone))
            except ConflictError as exc:
                if attempt >= self.max_attempts:
                    raise ResolutionRetryExhaustedError(attempt) from exc
                delay = self.retry_backoff_seconds * (2 ** (attempt - 1))
                logger.warning(
                    f"Conflict resolving email={email} phone={phone} "
                    f"(attempt {attempt}/{self.max_attempts}), retrying in {delay:.3f}s: {exc}"
                )
                if delay:
                    time.sleep(delay)

    def _resolve_once(self, email, phone):
        matches = self.store.find_by_email_or_phone(email, phone)
        if not matches:
            contact = self.store.create_contact(
                email=email, phone=phone, precedence=Contact.ContactType.PRIMARY
            )
            logger.info(f"Created primary contact {contact.id}")
            return consolidate(contact, [])

        roots = self._discover_roots(matches)
        primary, demoted = roots[0], roots[1:]
        if demoted:
            self._merge(primary, demoted)

        secondaries = self.store.find_secondaries_of(primary.id)
        check_cluster(primary, secondaries, matches)

        cluster = [primary, *secondaries]
        new_email = email is not None and email not in {c.email for c in cluster}
        new_phone = phone is not None and phone not in {c.phone_number for c in cluster}
        if new_email or new_phone:
            contact = self.store.create_contact(
                email=email,
                phone=phone,
                linked_id=primary.id,
                precedence=Contact.ContactType.SECONDARY,
            )
            logger.info(f"Added secondary contact {contact.id} to primary {primary.id}")
            secondaries.append(contact)

        return consolidate(primary, secondaries)

    def _discover_roots(self, matches):
        """Return the distinct primaries behind ``matches``, oldest first."""
        roots = {}
        linked = {}
        for contact in matches:
            root_id = root_id_of(contact)
            if root_id == contact.id:
                roots[contact.id] = contact
            else:
                linked.setdefault(root_id, []).append(contact)

        fetched = {c.id: c for c in self.store.find_by_ids(set(linked) - set(roots))}
        for root_id, contacts in linked.items():
            root = roots.get(root_id) or fetched.get(root_id)
            for contact in contacts:
                check_link_target(contact, root)
            roots[root_id] = root

        return sorted(roots.values(), key=lambda c: c.seniority)

    def _merge(self, primary, demoted):
        for root in demoted:
            self.store.update_contact(
                root.id,
                link_precedence=Contact.ContactType.SECONDARY,
                linked_id=primary.id,
            )
            moved = self.store.relink_secondaries(root.id, primary.id)
            logger.info(
                f"Merged cluster of primary {root.id} into primary {primary.id} "
                f"({moved} secondaries re-linked)"
            )


def resolve_identity(email=None, phone=None):
    return IdentityResolver().resolve(email=email, phone=phone)
