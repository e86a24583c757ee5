"""
Streamlit client helper tests (API calls replaced)
"""
from big5_service import streamlit_app


def _pending(file_id="f1"):
    return {"id": file_id, "status": "pending"}


class TestWaitUntilSettled:
    def test_returns_when_settled(self, monkeypatch):
        listings = iter([[_pending()], [{"id": "f1", "status": "done"}]])
        monkeypatch.setattr(streamlit_app, "_list_files", lambda: next(listings))
        monkeypatch.setattr(streamlit_app, "POLL_INTERVAL", 0)
        files, settled = streamlit_app._wait_until_settled(max_wait=5)
        assert settled
        assert files[0]["status"] == "done"

    def test_gives_up_on_stuck_files(self, monkeypatch):
        """A file that never leaves pending must not hang the page."""
        calls = []

        def stuck():
            calls.append(1)
            return [_pending()]

        monkeypatch.setattr(streamlit_app, "_list_files", stuck)
        monkeypatch.setattr(streamlit_app, "POLL_INTERVAL", 0)
        files, settled = streamlit_app._wait_until_settled(max_wait=0)
        assert not settled
        assert files == [_pending()]
        assert len(calls) == 1

    def test_api_failure(self, monkeypatch):
        monkeypatch.setattr(streamlit_app, "_list_files", lambda: None)
        assert streamlit_app._wait_until_settled(max_wait=5) == (None, False)


class TestCachedDownload:
    def test_body_fetched_once(self, monkeypatch):
        fetched = []

        def fetch(path, label):
            fetched.append(path)
            return b"<p>html</p>"

        monkeypatch.setattr(streamlit_app, "_fetch", fetch)
        cache = {}
        for _ in range(3):
            assert streamlit_app._cached(cache, "f1", "/files/f1/download", "Download") == b"<p>html</p>"
        assert fetched == ["/files/f1/download"]

    def test_failed_fetch_not_cached(self, monkeypatch):
        monkeypatch.setattr(streamlit_app, "_fetch", lambda path, label: None)
        cache = {}
        assert streamlit_app._cached(cache, "f1", "/files/f1/download", "Download") is None
        assert cache == {}


class TestClearServerFiles:
    def test_deletes_every_listed_file(self, monkeypatch):
        deleted = []

        def request(method, path, **kwargs):
            deleted.append((method, path))
            return object()

        monkeypatch.setattr(streamlit_app, "_list_files", lambda: [_pending("a"), _pending("b")])
        monkeypatch.setattr(streamlit_app, "_request", request)
        assert streamlit_app._clear_server_files() == 2
        assert deleted == [("DELETE", "/files/a"), ("DELETE", "/files/b")]

    def test_listing_failure_removes_nothing(self, monkeypatch):
        monkeypatch.setattr(streamlit_app, "_list_files", lambda: None)
        assert streamlit_app._clear_server_files() == 0
