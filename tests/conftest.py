import pytest
from django.db import connection
from django.test.utils import CaptureQueriesContext

from identity.models import Contact
from identity.resolution import IdentityResolver
from identity.store import ContactStore

WRITE_PREFIXES = ("INSERT", "UPDATE", "DELETE")


@pytest.fixture
def store(db):
    return ContactStore()


@pytest.fixture
def resolver(store):
    return IdentityResolver(store, retry_backoff_seconds=0)


@pytest.fixture
def make_contact(db):
    """Insert a contact directly, bypassing the resolver."""

    def _make(email=None, phone=None, linked_to=None, created_at=None, deleted_at=None):
        contact = Contact.objects.create(
            email=email,
            phone_number=phone,
            linked_id=linked_to,
            link_precedence=(
                Contact.ContactType.SECONDARY if linked_to else Contact.ContactType.PRIMARY
            ),
        )
        changes = {}
        if created_at is not None:
            changes["created_at"] = created_at
        if deleted_at is not None:
            changes["deleted_at"] = deleted_at
        if changes:
            Contact.objects.filter(pk=contact.pk).update(**changes)
            contact.refresh_from_db()
        return contact

    return _make


class WriteRecorder(CaptureQueriesContext):
    """Records the INSERT/UPDATE/DELETE statements issued inside the block."""

    @property
    def writes(self):
        return [
            q["sql"]
            for q in self.captured_queries
            if q["sql"].lstrip().upper().startswith(WRITE_PREFIXES)
        ]


@pytest.fixture
def record_writes(db):
    return lambda: WriteRecorder(connection)
