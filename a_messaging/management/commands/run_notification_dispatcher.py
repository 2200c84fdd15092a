import time

from django.core.management.base import BaseCommand

from a_core.firebase_admin_client import get_db, get_messaging
from a_messaging.notifications import NotificationDispatcher
from a_messaging.triggers import MessageCreatedTrigger


class Command(BaseCommand):
    help = "Push notifications and delivery status for every new chat message."

    def add_arguments(self, parser):
        parser.add_argument(
            "--skip-backlog",
            action="store_true",
            help="Do not dispatch SENT messages that already exist when the watcher starts",
        )

    def handle(self, *args, **opts):
        db = get_db()
        dispatcher = NotificationDispatcher(db, messaging=get_messaging())
        trigger = MessageCreatedTrigger(db, dispatcher, skip_backlog=opts["skip_backlog"])
        trigger.start()
        self.stdout.write(self.style.SUCCESS("Notification dispatcher running. Ctrl+C to stop."))
        try:
            while True:
                time.sleep(1)
        except KeyboardInterrupt:
            self.stdout.write("Stopping…")
        finally:
            trigger.stop()
