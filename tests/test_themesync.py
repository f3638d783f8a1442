from __future__ import annotations

import zipfile
from pathlib import Path

import pytest
from click.testing import CliRunner

import themesync
from themesync import (
    MessageMerge,
    SyncSettings,
    append_messages,
    download_bundle,
    sync_translations,
    sync_tree,
)

ADMIN_SOURCE = themesync.DEFAULT_MESSAGE_MERGES[0].source
ACCOUNT_SOURCE = themesync.DEFAULT_MESSAGE_MERGES[1].source


def build_bundle(path: Path, files: dict[str, str]) -> Path:
    with zipfile.ZipFile(path, "w") as bundle:
        for name, content in files.items():
            bundle.writestr(name, content)
    return path


@pytest.fixture
def bundle(tmp_path: Path) -> Path:
    base = themesync.THEME_BASE_SUBDIR
    return build_bundle(tmp_path / "weblate.zip", {
        f"{base}/admin/messages/messages_de.properties": "save=Speichern\n",
        f"{base}/login/messages/messages_fr.properties": "login=Connexion\n",
        ADMIN_SOURCE: "save=儲存\n",
    })


@pytest.fixture
def serve_bundle(monkeypatch: pytest.MonkeyPatch, bundle: Path):
    requested = []

    def fake_download(url: str, destination: Path) -> Path:
        requested.append(url)
        destination.write_bytes(bundle.read_bytes())
        return destination

    monkeypatch.setattr(themesync, "download_bundle", fake_download)
    return requested


def test_sync_tree_overwrites_and_keeps_extra_files(tmp_path: Path) -> None:
    source = tmp_path / "source"
    target = tmp_path / "target"
    (source / "admin").mkdir(parents=True)
    (source / "admin/theme.properties").write_text("new")
    (target / "admin").mkdir(parents=True)
    (target / "admin/theme.properties").write_text("old")
    (target / "admin/custom.css").write_text("keep me")

    copied = sync_tree(source, target)

    assert copied == [target / "admin/theme.properties"]
    assert (target / "admin/theme.properties").read_text() == "new"
    assert (target / "admin/custom.css").read_text() == "keep me"


def test_append_messages_creates_target(tmp_path: Path) -> None:
    source = tmp_path / "messages_zh_Hant.properties"
    source.write_text("a=1\n")
    target = tmp_path / "theme/admin/messages/messages_zh_TW.properties"

    assert append_messages(source, target)
    assert append_messages(source, target)
    assert target.read_text() == "a=1\na=1\n"


def test_append_messages_without_source(tmp_path: Path) -> None:
    target = tmp_path / "messages_zh_TW.properties"

    assert not append_messages(tmp_path / "missing.properties", target)
    assert not target.exists()


def test_sync_translations_merges_bundle(tmp_path: Path, serve_bundle, monkeypatch: pytest.MonkeyPatch) -> None:
    work_dir = tmp_path / "work"
    work_dir.mkdir()
    monkeypatch.setattr(themesync.tempfile, "mkdtemp", lambda prefix: str(work_dir))
    target = tmp_path / "themes"
    (target / "admin/messages").mkdir(parents=True)
    (target / "admin/messages/messages_zh_TW.properties").write_text("cancel=取消\n", encoding="utf-8")

    report = sync_translations(SyncSettings(url="https://weblate.test/bundle.zip", target_dir=target))

    assert serve_bundle == ["https://weblate.test/bundle.zip"]
    assert (target / "admin/messages/messages_de.properties").read_text() == "save=Speichern\n"
    assert (target / "login/messages/messages_fr.properties").exists()
    assert (target / "admin/messages/messages_zh_TW.properties").read_text(encoding="utf-8") == "cancel=取消\nsave=儲存\n"
    # No account messages in this bundle
    assert report.appended == [target / "admin/messages/messages_zh_TW.properties"]
    assert not (target / "account").exists()
    assert len(report.copied) == 2
    assert not work_dir.exists()


def test_keep_temp_leaves_work_dir(tmp_path: Path, serve_bundle, monkeypatch: pytest.MonkeyPatch) -> None:
    work_dir = tmp_path / "work"
    work_dir.mkdir()
    monkeypatch.setattr(themesync.tempfile, "mkdtemp", lambda prefix: str(work_dir))

    sync_translations(SyncSettings(target_dir=tmp_path / "themes", keep_temp=True, merges=[]))

    assert (work_dir / "weblate.zip").exists()


def test_custom_merge_pairs(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    archive = build_bundle(tmp_path / "b.zip", {"msgs/zh.properties": "x=1\n"})
    monkeypatch.setattr(
        themesync, "download_bundle", lambda url, dest: dest.write_bytes(archive.read_bytes()) and dest
    )
    settings = SyncSettings(
        target_dir=tmp_path / "themes",
        merges=[MessageMerge("msgs/zh.properties", "login/messages/messages_zh_TW.properties")],
    )

    report = sync_translations(settings)

    assert report.copied == []
    assert (tmp_path / "themes/login/messages/messages_zh_TW.properties").read_text() == "x=1\n"


def test_download_bundle_streams_to_file(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    class FakeResponse:
        def __enter__(self):
            return self

        def __exit__(self, *exc_info):
            return False

        def raise_for_status(self) -> None:
            pass

        def iter_content(self, chunk_size: int):
            yield b"PK"
            yield b"\x03\x04"

    calls = []

    def fake_get(url, **kwargs):
        calls.append((url, kwargs))
        return FakeResponse()

    monkeypatch.setattr(themesync.requests, "get", fake_get)

    result = download_bundle("https://weblate.test/bundle.zip", tmp_path / "bundle.zip")

    assert result.read_bytes() == b"PK\x03\x04"
    assert calls == [
        ("https://weblate.test/bundle.zip", {"stream": True, "allow_redirects": True, "timeout": 60})
    ]


def test_cli_reports_broken_bundle(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(
        themesync, "download_bundle", lambda url, dest: dest.write_bytes(b"not a zip") and dest
    )

    result = CliRunner().invoke(themesync.main, ["--target", str(tmp_path / "themes")])

    assert result.exit_code == 1
    assert "Sync failed" in result.output
