import os
import time
import requests
import streamlit as st

API_BASE = os.getenv("BIG5_SERVICE_API_BASE", os.getenv("API_BASE", "http://localhost:8080")).rstrip("/")
POLL_INTERVAL = float(os.getenv("BIG5_SERVICE_UI_POLL_INTERVAL", "0.5"))
MAX_WAIT = float(os.getenv("BIG5_SERVICE_UI_MAX_WAIT", "60"))

STATUS_BADGES = {
    "pending": "⏳ Pending",
    "converting": "🔄 Converting...",
    "done": "✅ Ready",
    "error": "❌ Error",
}
TRANSIENT_STATUS = {409, 423, 429}


def _reset_state():
    for key in ["files", "error", "html_cache", "pdf_cache", "zip_bytes"]:
        if key in st.session_state:
            del st.session_state[key]
    # Bump the uploader key to clear any previously uploaded file widget state
    if "upload_key" in st.session_state:
        st.session_state["upload_key"] += 1
    else:
        st.session_state["upload_key"] = 1


def _request(method: str, path: str, *, label: str, timeout: float = 60, **kwargs) -> requests.Response | None:
    """Call the API, retrying network errors and transient statuses with backoff."""
    max_attempts = 5
    backoff = 0.5
    last_text = ""
    for attempt in range(1, max_attempts + 1):
        try:
            resp = requests.request(method, f"{API_BASE}{path}", timeout=timeout, **kwargs)
        except requests.RequestException as e:
            last_text = str(e)
            if attempt < max_attempts:
                time.sleep(backoff)
                backoff *= 1.5
                continue
            st.session_state["error"] = f"{label} failed: {e}"
            return None
        last_text = resp.text
        if resp.ok:
            return resp
        if resp.status_code in TRANSIENT_STATUS or 500 <= resp.status_code < 600:
            if attempt < max_attempts:
                time.sleep(backoff)
                backoff *= 1.5
                continue
        st.session_state["error"] = f"{label} error: {resp.status_code} {last_text}"
        return None
    st.session_state["error"] = f"{label} error after retries: {last_text}"
    return None


def _upload(uploaded_files: list) -> list[dict[str, object]] | None:
    files = [
        ("files", (f.name, f.getvalue(), f.type or "text/html"))
        for f in uploaded_files
    ]
    try:
        resp = requests.post(f"{API_BASE}/files", files=files, timeout=60)
    except requests.RequestException as e:
        st.session_state["error"] = f"Failed to connect to API: {e}"
        return None
    if resp.status_code not in (200, 202):
        st.session_state["error"] = f"Upload failed: {resp.status_code} {resp.text}"
        return None
    return list(resp.json().get("files", []))


def _list_files() -> list[dict[str, object]] | None:
    resp = _request("GET", "/files", label="Status check", timeout=30)
    if resp is None:
        return None
    return list(resp.json().get("files", []))


def _wait_until_settled(max_wait: float = MAX_WAIT) -> tuple[list[dict[str, object]] | None, bool]:
    """Poll until no file is pending or converting, giving up after `max_wait` seconds.

    Returns the last listing and whether it settled.
    """
    deadline = time.monotonic() + max_wait
    while True:
        files = _list_files()
        if files is None:
            return None, False
        if not any(f.get("status") in {"pending", "converting"} for f in files):
            return files, True
        if time.monotonic() >= deadline:
            return files, False
        time.sleep(POLL_INTERVAL)


def _fetch(path: str, label: str) -> bytes | None:
    resp = _request("GET", path, label=label)
    return resp.content if resp is not None else None


def _cached(cache: dict[str, bytes], key: str, path: str, label: str) -> bytes | None:
    if key not in cache:
        data = _fetch(path, label)
        if data is None:
            return None
        cache[key] = data
    return cache[key]


def _forget(file_id: str) -> None:
    for key in ("html_cache", "pdf_cache"):
        st.session_state.get(key, {}).pop(file_id, None)
    st.session_state.pop("zip_bytes", None)


def _clear_server_files() -> int:
    """Remove every file the API still holds. Returns how many were removed."""
    files = _list_files() or []
    removed = 0
    for f in files:
        if _request("DELETE", f"/files/{f['id']}", label="Remove", timeout=30) is not None:
            removed += 1
    return removed


def _render_file_row(f: dict[str, object]) -> None:
    file_id = str(f["id"])
    status = str(f.get("status", "pending"))
    name_col, status_col, actions_col = st.columns([4, 2, 4])
    with name_col:
        st.write(f"📄 {f['name']}")
    with status_col:
        st.write(STATUS_BADGES.get(status, status))
        if status == "error" and f.get("error"):
            st.caption(str(f["error"]))
    with actions_col:
        a, b, c = st.columns(3)
        if status == "done":
            with a:
                html_cache = st.session_state.setdefault("html_cache", {})
                data = _cached(html_cache, file_id, f"/files/{file_id}/download", "Download")
                if data is not None:
                    st.download_button(
                        "HTML",
                        data=data,
                        file_name=str(f["utf8_name"]),
                        mime="text/html",
                        key=f"html-{file_id}",
                        help="Download UTF-8 HTML",
                    )
            with b:
                cache = st.session_state.setdefault("pdf_cache", {})
                if file_id in cache:
                    st.download_button(
                        "PDF",
                        data=cache[file_id],
                        file_name=str(f["pdf_name"]),
                        mime="application/pdf",
                        key=f"pdf-{file_id}",
                    )
                elif st.button("Export PDF", key=f"render-{file_id}"):
                    with st.spinner("Rendering PDF..."):
                        pdf = _fetch(f"/files/{file_id}/pdf", "PDF export")
                    if pdf is not None:
                        cache[file_id] = pdf
                        st.rerun()
        with c:
            if st.button("Remove", key=f"remove-{file_id}"):
                _request("DELETE", f"/files/{file_id}", label="Remove", timeout=30)
                _forget(file_id)
                st.rerun()


def main() -> None:
    st.set_page_config(page_title="Big5 to UTF-8 Converter", page_icon="🔤", layout="centered")
    st.title("Big5 to UTF-8 Converter")
    st.caption("Upload Big5 encoded HTML files to convert them to UTF-8 and PDF.")
    st.caption(f"API base: {API_BASE}")

    if st.button("Restart", type="secondary", help="Remove all files and start over"):
        _clear_server_files()
        _reset_state()
        st.rerun()

    # Use a dynamic key so that restarting bumps the key and clears the previous upload
    if "upload_key" not in st.session_state:
        st.session_state["upload_key"] = 0
    uploaded = st.file_uploader(
        "HTML files (Big5 encoded)",
        type=["html", "htm"],
        accept_multiple_files=True,
        key=f"uploader-{st.session_state['upload_key']}",
    )

    if uploaded and st.button("Convert", type="primary"):
        with st.spinner("Uploading files..."):
            created = _upload(uploaded)
        if created is not None:
            st.toast(f"{len(created)} file(s) queued", icon="✅")
            st.session_state.pop("zip_bytes", None)
            # Clear the uploader so the same batch is not submitted twice
            st.session_state["upload_key"] += 1
        else:
            st.error(st.session_state.get("error", "Unknown error"))

    with st.spinner("Converting..."):
        files, settled = _wait_until_settled()
    if files is None:
        st.error(st.session_state.get("error", "Status error"))
        return
    if not settled:
        st.warning("Some files are still converting. Refresh the page to check again.")

    if files:
        completed = sum(1 for f in files if f.get("status") == "done")
        header_col, zip_col = st.columns([3, 2])
        with header_col:
            st.subheader(f"Files ({len(files)})")
        with zip_col:
            if completed > 0:
                if "zip_bytes" not in st.session_state:
                    data = _fetch("/archive", "Archive")
                    if data is not None:
                        st.session_state["zip_bytes"] = data
                if "zip_bytes" in st.session_state:
                    st.download_button(
                        "Download All (ZIP)",
                        data=st.session_state["zip_bytes"],
                        file_name="converted_files.zip",
                        mime="application/zip",
                        type="primary",
                    )
        for f in files:
            _render_file_row(f)

    if err := st.session_state.get("error"):
        st.error(err)


if __name__ == "__main__":
    main()
