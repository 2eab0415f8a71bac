from django.core.management.base import BaseCommand, CommandError

from identity.integrity import find_violations
from identity.models import Contact


class Command(BaseCommand):
    help = "Check that stored contacts form one depth-1 tree per cluster, rooted at its oldest contact."

    def handle(self, *args, **options):
        contacts = list(Contact.objects.active())
        violations = find_violations(contacts)
        for violation in violations:
            self.stderr.write(self.style.ERROR(violation.message))
        if violations:
            raise CommandError(f"{len(violations)} contact integrity violation(s) found.")
        self.stdout.write(self.style.SUCCESS(f"{len(contacts)} contacts checked, no violations."))
