"""Tests for the already-found index."""

import threading

from harvester.resolver.index import AlreadyFoundIndex, IndexEntry


class TestAlreadyFoundIndex:
    def test_first_writer_wins(self):
        index = AlreadyFoundIndex()

        assert index.add("https://repo.example.org/a.pdf", "ID1") is True
        assert index.add("https://repo.example.org/a.pdf", "ID2") is False
        assert index.lookup("https://repo.example.org/a.pdf") == IndexEntry(
            "https://repo.example.org/a.pdf", "ID1"
        )

    def test_lookup_uses_canonical_form(self):
        index = AlreadyFoundIndex()
        index.add("HTTPS://Repo.Example.org:443/a.pdf;jsessionid=XYZ", "ID1")

        assert "https://repo.example.org/a.pdf" in index
        assert len(index) == 1

    def test_missing_url(self):
        index = AlreadyFoundIndex()
        assert index.lookup("https://repo.example.org/a.pdf") is None
        assert 42 not in index

    def test_concurrent_adds_accept_exactly_one(self):
        index = AlreadyFoundIndex()
        barrier = threading.Barrier(8)
        results = []

        def add(number):
            barrier.wait()
            results.append(index.add("https://repo.example.org/a.pdf", f"ID{number}"))

        threads = [threading.Thread(target=add, args=(number,)) for number in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert results.count(True) == 1
        assert len(index) == 1
