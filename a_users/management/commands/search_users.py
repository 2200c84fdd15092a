from django.core.management.base import BaseCommand, CommandError

from a_core.firebase_admin_client import get_db
from a_users.contacts import CsvContactsProvider
from a_users.directory import UserDirectory


class Command(BaseCommand):
    help = "Search users by username prefix, merged with an exported contact list."

    def add_arguments(self, parser):
        parser.add_argument("query")
        parser.add_argument("--as", dest="uid", default=None, help="Searching user's uid (excluded from results)")
        parser.add_argument("--contacts", default=None, help="CSV file of name,phone rows")

    def handle(self, *args, **opts):
        contacts = CsvContactsProvider(opts["contacts"]) if opts["contacts"] else None
        result = UserDirectory(get_db()).search(opts["query"], self_id=opts["uid"], contacts=contacts)
        if not result.ok:
            raise CommandError(str(result.error))

        for entry in result.value:
            if entry.is_registered:
                self.stdout.write(f"{entry.display_name}  ({entry.uid})")
            else:
                self.stdout.write(f"{entry.display_name}  {entry.phone}  [not on chat]")
        self.stdout.write(self.style.SUCCESS(f"{len(result.value)} result(s)."))
