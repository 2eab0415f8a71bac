from django.db import models
from django.db.models import Q


class ContactQuerySet(models.QuerySet):
    def active(self):
        return self.filter(deleted_at__isnull=True)


class Contact(models.Model):
    class ContactType(models.TextChoices):
        PRIMARY = "primary", "Primary"
        SECONDARY = "secondary", "Secondary"

    id = models.AutoField(primary_key=True)
    phone_number = models.CharField(max_length=20, null=True, blank=True, db_index=True)
    email = models.EmailField(max_length=255, null=True, blank=True, db_index=True)

    # A secondary points straight at the primary of its cluster, never at another secondary.
    linked_id = models.ForeignKey(
        "self",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="secondary_contacts",
        db_column="linked_id",
    )

    link_precedence = models.CharField(
        max_length=10, choices=ContactType.choices, db_index=True
    )

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)
    deleted_at = models.DateTimeField(null=True, blank=True, db_index=True)

    objects = ContactQuerySet.as_manager()

    class Meta:
        db_table = "contacts"
        constraints = [
            models.CheckConstraint(
                condition=(
                    Q(link_precedence="primary", linked_id__isnull=True)
                    | Q(link_precedence="secondary", linked_id__isnull=False)
                ),
                name="contact_link_matches_precedence",
            ),
            models.CheckConstraint(
                condition=Q(email__isnull=False) | Q(phone_number__isnull=False),
                name="contact_has_email_or_phone",
            ),
        ]

    def __str__(self):
        return f"ID: {self.id} - {self.email or self.phone_number}"

    @property
    def is_primary(self):
        return self.link_precedence == self.ContactType.PRIMARY

    @property
    def seniority(self):
        """Sort key: older contacts first, ids break timestamp ties."""
        return (self.created_at, self.id)
