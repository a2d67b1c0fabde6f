"""Partition a batch of emails by provider thread."""

from typing import Iterable, NamedTuple

from .models import Email


class ThreadGroups(NamedTuple):
    threads: dict[str, list[Email]]
    orphans: list[Email]


def sort_chronologically(emails: Iterable[Email]) -> list[Email]:
    # id breaks ties so equal timestamps still order deterministically
    return sorted(emails, key=lambda e: (e.received_at, e.id))


def group_by_thread(emails: Iterable[Email]) -> ThreadGroups:
    """Split emails into threads keyed by thread id and thread-less orphans.

    Each thread, and the orphan list, comes back oldest first.
    """
    threads: dict[str, list[Email]] = {}
    orphans: list[Email] = []

    for email in emails:
        if email.thread_id:
            threads.setdefault(email.thread_id, []).append(email)
        else:
            orphans.append(email)

    return ThreadGroups(
        threads={thread_id: sort_chronologically(members) for thread_id, members in threads.items()},
        orphans=sort_chronologically(orphans),
    )
