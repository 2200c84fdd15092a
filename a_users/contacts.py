# a_users/contacts.py
import csv
import re
from dataclasses import dataclass
from typing import Iterable, List, Optional, Protocol

from django.conf import settings


@dataclass(frozen=True)
class DeviceContact:
    display_name: str
    phone: str


class ContactsProvider(Protocol):
    def read(self) -> List[DeviceContact]:
        ...


def normalize_phone(raw_phone: Optional[str]) -> Optional[str]:
    """Digits only; None when fewer than CHAT_MIN_PHONE_DIGITS remain."""
    digits = re.sub(r"\D", "", raw_phone or "")
    if len(digits) < settings.CHAT_MIN_PHONE_DIGITS:
        return None
    return digits


class StaticContactsProvider:
    def __init__(self, contacts: Iterable[DeviceContact]):
        self._contacts = list(contacts)

    def read(self) -> List[DeviceContact]:
        return list(self._contacts)


class CsvContactsProvider:
    """Reads `name,phone` rows exported from a device address book."""

    def __init__(self, path: str):
        self.path = path

    def read(self) -> List[DeviceContact]:
        out = []
        with open(self.path, "r", encoding="utf-8-sig", newline="") as f:
            for row in csv.reader(f):
                if len(row) < 2 or not row[0].strip():
                    continue
                out.append(DeviceContact(display_name=row[0].strip(), phone=row[1].strip()))
        return out
