"""Smoke test for the Streamlit front end against a live server."""

from pathlib import Path

from streamlit.testing.v1 import AppTest

APP_PATH = str(Path(__file__).resolve().parent.parent / "streamlit_app.py")


def make_app(server, local_folder):
    at = AppTest.from_file(APP_PATH, default_timeout=30)
    host, port = server.address
    at.session_state["server_host"] = host
    at.session_state["server_port"] = port
    at.session_state["local_folder"] = str(local_folder)
    return at


def test_shows_both_listings(server, shared_folder, local_folder):
    (shared_folder / "remote.txt").write_bytes(b"r")
    (local_folder / "local.txt").write_bytes(b"l")

    at = make_app(server, local_folder).run()

    assert not at.exception
    assert at.selectbox(key="local_choice").options == ["local.txt"]
    assert at.multiselect(key="remote_choice").options == ["remote.txt"]


def test_upload_button(server, shared_folder, local_folder):
    (local_folder / "up.txt").write_bytes(b"xyz")

    at = make_app(server, local_folder).run()
    at.button(key="upload").click().run()

    assert not at.exception
    assert (shared_folder / "up.txt").read_bytes() == b"xyz"
    assert at.multiselect(key="remote_choice").options == ["up.txt"]
