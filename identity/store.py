import logging
from functools import reduce
from operator import or_

from django.db import DEFAULT_DB_ALIAS, InterfaceError, OperationalError, transaction
from django.db.models import Q
from django.utils import timezone

from .exceptions import ConflictError, InvariantViolationError, StoreUnavailableError
from .integrity import check_link_target
from .models import Contact

logger = logging.getLogger(__name__)

# serialization_failure, deadlock_detected
CONFLICT_SQLSTATES = frozenset({"40001", "40P01"})

_UNSET = object()


def is_conflict(exc):
    cause = exc.__cause__
    sqlstate = getattr(cause, "sqlstate", None) or getattr(cause, "pgcode", None)
    if sqlstate in CONFLICT_SQLSTATES:
        return True
    return "database is locked" in str(exc).lower()


class ContactStore:
    """
    Contact persistence on top of the Django ORM.

    Reads issued inside ``run_atomically`` lock the returned rows, so two
    resolutions that touch the same cluster queue up on its rows instead of
    interleaving. Every write refuses to create a secondary that links to
    anything other than a live primary.
    """

    def __init__(self, using=DEFAULT_DB_ALIAS):
        self.using = using

    def _contacts(self):
        return Contact.objects.using(self.using).active()

    def _locked(self, queryset):
        if transaction.get_connection(self.using).in_atomic_block:
            return queryset.select_for_update()
        return queryset

    def run_atomically(self, unit_of_work):
        try:
            with transaction.atomic(using=self.using, durable=True):
                return unit_of_work()
        except OperationalError as exc:
            if is_conflict(exc):
                logger.debug(f"Contact store conflict: {exc}")
                raise ConflictError(str(exc)) from exc
            logger.error(f"Contact store unavailable: {exc}")
            raise StoreUnavailableError(str(exc)) from exc
        except InterfaceError as exc:
            raise StoreUnavailableError(str(exc)) from exc

    def find_by_email_or_phone(self, email=None, phone=None):
        clauses = []
        if email is not None:
            clauses.append(Q(email=email))
        if phone is not None:
            clauses.append(Q(phone_number=phone))
        if not clauses:
            return []
        queryset = self._contacts().filter(reduce(or_, clauses)).order_by("id")
        return list(self._locked(queryset))

    def find_by_ids(self, ids):
        ids = set(ids)
        if not ids:
            return []
        return list(self._locked(self._contacts().filter(id__in=ids).order_by("id")))

    def find_secondaries_of(self, primary_id):
        queryset = self._contacts().filter(linked_id=primary_id).order_by("id")
        return list(self._locked(queryset))

    def create_contact(self, email=None, phone=None, linked_id=None, precedence=Contact.ContactType.PRIMARY):
        self._check_link(None, precedence, linked_id)
        contact = Contact(
            email=email,
            phone_number=phone,
            linked_id_id=linked_id,
            link_precedence=precedence,
        )
        contact.save(using=self.using, force_insert=True)
        return contact

    def update_contact(self, contact_id, link_precedence=_UNSET, linked_id=_UNSET):
        contact = self._locked(self._contacts().filter(id=contact_id)).first()
        if contact is None:
            raise InvariantViolationError(
                f"Cannot update missing or deleted contact {contact_id}.", (contact_id,)
            )
        if link_precedence is not _UNSET:
            contact.link_precedence = link_precedence
        if linked_id is not _UNSET:
            contact.linked_id_id = linked_id
        self._check_link(contact.id, contact.link_precedence, contact.linked_id_id)
        contact.save(
            using=self.using,
            update_fields=["link_precedence", "linked_id", "updated_at"],
        )
        return contact

    def relink_secondaries(self, from_primary_id, to_primary_id):
        """Point every secondary of ``from_primary_id`` at ``to_primary_id``.

        Tombstoned rows are re-pointed as well so no deleted secondary is left
        hanging off a demoted primary.
        """
        self._check_link(None, Contact.ContactType.SECONDARY, to_primary_id)
        return (
            Contact.objects.using(self.using)
            .filter(linked_id=from_primary_id)
            .update(linked_id=to_primary_id, updated_at=timezone.now())
        )

    def _check_link(self, contact_id, precedence, linked_id):
        label = contact_id if contact_id is not None else "(new)"
        if precedence == Contact.ContactType.PRIMARY:
            if linked_id is not None:
                raise InvariantViolationError(
                    f"Primary contact {label} cannot link to contact {linked_id}.",
                    (contact_id, linked_id),
                )
            return
        if linked_id is None or linked_id == contact_id:
            raise InvariantViolationError(
                f"Secondary contact {label} needs a primary other than itself.",
                (contact_id,),
            )
        target = self._contacts().filter(id=linked_id).first()
        probe = Contact(id=contact_id, linked_id_id=linked_id, link_precedence=precedence)
        check_link_target(probe, target)
