"""Local mailbox identity generator used by the empty-domain flow."""

from __future__ import annotations

import random
from typing import Callable

MailboxGenerator = Callable[[str, int], list[dict[str, str]]]

_NAME_PAIRS: tuple[tuple[str, str], ...] = (
    ("John", "Smith"),
    ("Michael", "Johnson"),
    ("David", "Brown"),
    ("Robert", "Davis"),
    ("James", "Taylor"),
    ("Emma", "Smith"),
    ("Sophia", "Johnson"),
    ("Olivia", "Brown"),
    ("Ava", "Davis"),
    ("Isabella", "Taylor"),
)


def _username_patterns(first: str, last: str) -> list[str]:
    f, l = first.lower(), last.lower()
    return [f"{f}.{l}", f"{f}{l}", f"{f[0]}.{l}", f"{l}.{f}"]


def mailbox_generator(rng: random.Random | None = None) -> MailboxGenerator:
    """Return ``generate(domain_name, count)`` producing unique usernames.

    Gives up after ``count * 10`` draws, so very large counts on one domain
    may return fewer mailboxes than requested.
    """
    rng = rng or random.Random()

    def generate(domain_name: str, count: int = 3) -> list[dict[str, str]]:
        result: list[dict[str, str]] = []
        used: set[str] = set()
        draws = 0
        while len(result) < count and draws < count * 10:
            draws += 1
            first, last = rng.choice(_NAME_PAIRS)
            username = rng.choice(_username_patterns(first, last))
            if username in used:
                continue
            used.add(username)
            result.append({
                "firstName": first,
                "lastName": last,
                "mailboxUsername": username,
                "domainName": domain_name,
            })
        return result

    return generate
