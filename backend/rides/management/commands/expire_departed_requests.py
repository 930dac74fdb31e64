from django.core.management.base import BaseCommand

from services.booking import expire_departed_requests


class Command(BaseCommand):
    help = "Reject pending seat requests on active rides whose departure time has passed."

    def handle(self, *args, **options):
        expired = expire_departed_requests()

        self.stdout.write(
            self.style.SUCCESS(f"Rejected {expired} pending request(s) on departed rides.")
        )
