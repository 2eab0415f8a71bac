import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="Contact",
            fields=[
                ("id", models.AutoField(primary_key=True, serialize=False)),
                (
                    "phone_number",
                    models.CharField(blank=True, db_index=True, max_length=20, null=True),
                ),
                (
                    "email",
                    models.EmailField(blank=True, db_index=True, max_length=255, null=True),
                ),
                (
                    "link_precedence",
                    models.CharField(
                        choices=[("primary", "Primary"), ("secondary", "Secondary")],
                        db_index=True,
                        max_length=10,
                    ),
                ),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("deleted_at", models.DateTimeField(blank=True, db_index=True, null=True)),
                (
                    "linked_id",
                    models.ForeignKey(
                        blank=True,
                        db_column="linked_id",
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="secondary_contacts",
                        to="identity.contact",
                    ),
                ),
            ],
            options={
                "db_table": "contacts",
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(
                            models.Q(("link_precedence", "primary"), ("linked_id__isnull", True)),
                            models.Q(("link_precedence", "secondary"), ("linked_id__isnull", False)),
                            _connector="OR",
                        ),
                        name="contact_link_matches_precedence",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(
                            ("email__isnull", False),
                            ("phone_number__isnull", False),
                            _connector="OR",
                        ),
                        name="contact_has_email_or_phone",
                    ),
                ],
            },
        ),
    ]
