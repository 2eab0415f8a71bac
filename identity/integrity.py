"""
Structural checks for contact clusters.

Non-deleted contacts must form a forest of depth-1 trees: every primary has no
link, every secondary links straight to a non-deleted primary, and each
primary is at least as old as all of its secondaries. The resolver calls the
single-contact checks while it walks matches; the audit command runs
``find_violations`` over the whole table.
"""

from dataclasses import dataclass

from .exceptions import InvariantViolationError
from .models import Contact


@dataclass(frozen=True)
class Violation:
    contact_ids: tuple
    message: str


def root_id_of(contact):
    """Return the id of the primary that ``contact`` belongs to."""
    if contact.link_precedence == Contact.ContactType.PRIMARY:
        if contact.linked_id_id is not None:
            raise InvariantViolationError(
                f"Primary contact {contact.id} links to contact {contact.linked_id_id}.",
                (contact.id, contact.linked_id_id),
            )
        return contact.id
    if contact.linked_id_id is None:
        raise InvariantViolationError(
            f"Secondary contact {contact.id} has no linked primary.", (contact.id,)
        )
    return contact.linked_id_id


def check_link_target(contact, target):
    """``target`` is what ``contact.linked_id`` resolved to in the store, or None."""
    if target is None:
        raise InvariantViolationError(
            f"Contact {contact.id} links to missing or deleted contact {contact.linked_id_id}.",
            (contact.id, contact.linked_id_id),
        )
    if not target.is_primary:
        raise InvariantViolationError(
            f"Contact {contact.id} links to secondary contact {target.id}.",
            (contact.id, target.id),
        )


def check_cluster(primary, members, matches):
    """Every matched contact must sit in the gathered cluster once merging is done."""
    gathered = {primary.id} | {member.id for member in members}
    stray = sorted(c.id for c in matches if c.id not in gathered)
    if stray:
        raise InvariantViolationError(
            f"Matched contacts {stray} are not in the cluster of primary {primary.id} after merging.",
            (primary.id, *stray),
        )


def find_violations(contacts):
    by_id = {contact.id: contact for contact in contacts}
    violations = []
    for contact in sorted(by_id.values(), key=lambda c: c.id):
        try:
            root_id = root_id_of(contact)
            if root_id == contact.id:
                continue
            root = by_id.get(root_id)
            check_link_target(contact, root)
        except InvariantViolationError as exc:
            violations.append(Violation(exc.contact_ids, str(exc)))
            continue
        if contact.seniority < root.seniority:
            violations.append(
                Violation(
                    (root.id, contact.id),
                    f"Secondary contact {contact.id} is older than its primary {root.id}.",
                )
            )
    return violations
