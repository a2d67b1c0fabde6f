from onlyjobs.threads import group_by_thread, sort_chronologically


def test_groups_by_thread_and_keeps_orphans(make_email):
    emails = [
        make_email("m3", thread_id="T1", days=5),
        make_email("m1", thread_id="T1", days=0),
        make_email("m2", thread_id="T2", days=1),
        make_email("o2", days=4),
        make_email("o1", days=2),
    ]

    groups = group_by_thread(emails)

    assert set(groups.threads) == {"T1", "T2"}
    assert [e.id for e in groups.threads["T1"]] == ["m1", "m3"]
    assert [e.id for e in groups.threads["T2"]] == ["m2"]
    assert [e.id for e in groups.orphans] == ["o1", "o2"]


def test_empty_thread_id_is_an_orphan(make_email):
    groups = group_by_thread([make_email("m1", thread_id="")])
    assert groups.threads == {}
    assert [e.id for e in groups.orphans] == ["m1"]


def test_sort_breaks_ties_by_id(make_email):
    emails = [make_email("b"), make_email("a")]
    assert [e.id for e in sort_chronologically(emails)] == ["a", "b"]
