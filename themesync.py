#!/usr/bin/env python3
"""
Weblate Theme Translation Sync Tool

Downloads the Keycloak translation bundle from Weblate and merges it into a
local theme directory:
- Community theme resources are copied over the target (extra files are kept)
- Traditional Chinese admin and account messages are appended to zh_TW
"""

import shutil
import tempfile
import zipfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import List

import click
import requests
from rich.console import Console

console = Console()

DEFAULT_BUNDLE_URL = "https://hosted.weblate.org/download/keycloak/?format=zip"
DEFAULT_TARGET_DIR = "themes"
THEME_BASE_SUBDIR = "keycloak/admin-ui/themes/src/main/resources-community/theme/base"
DOWNLOAD_CHUNK_SIZE = 64 * 1024
DOWNLOAD_TIMEOUT = 60  # seconds, per connect/read


@dataclass
class MessageMerge:
    """A messages file in the bundle appended onto one in the theme"""
    source: str
    target: str


DEFAULT_MESSAGE_MERGES = [
    MessageMerge(
        "keycloak/admin-ui/js/apps/admin-ui/maven-resources-community/theme/keycloak.v2/admin/messages/messages_zh_Hant.properties",
        "admin/messages/messages_zh_TW.properties",
    ),
    MessageMerge(
        "keycloak/admin-ui/js/apps/account-ui/maven-resources-community/theme/keycloak.v3/account/messages/messages_zh_Hant.properties",
        "account/messages/messages_zh_TW.properties",
    ),
]


@dataclass
class SyncSettings:
    url: str = DEFAULT_BUNDLE_URL
    target_dir: Path = Path(DEFAULT_TARGET_DIR)
    theme_subdir: str = THEME_BASE_SUBDIR
    merges: List[MessageMerge] = field(default_factory=lambda: list(DEFAULT_MESSAGE_MERGES))
    keep_temp: bool = False


@dataclass
class SyncReport:
    copied: List[Path] = field(default_factory=list)
    appended: List[Path] = field(default_factory=list)


def download_bundle(url: str, destination: Path) -> Path:
    """Download the zip bundle at ``url`` into ``destination``."""
    with requests.get(url, stream=True, allow_redirects=True, timeout=DOWNLOAD_TIMEOUT) as response:
        response.raise_for_status()
        with open(destination, "wb") as f:
            for chunk in response.iter_content(chunk_size=DOWNLOAD_CHUNK_SIZE):
                f.write(chunk)
    return destination


def extract_bundle(archive: Path, destination: Path) -> Path:
    with zipfile.ZipFile(archive) as bundle:
        bundle.extractall(destination)
    return destination


def sync_tree(source: Path, target: Path) -> List[Path]:
    """Copy ``source`` over ``target`` without deleting extra target files.

    Returns the target paths that were written.
    """
    copied = []
    for path in sorted(source.rglob("*")):
        destination = target / path.relative_to(source)
        if path.is_dir():
            destination.mkdir(parents=True, exist_ok=True)
            continue
        destination.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(path, destination)
        copied.append(destination)
    return copied


def append_messages(source: Path, target: Path) -> bool:
    """Append ``source`` to ``target`` if the source exists."""
    if not source.is_file():
        return False
    target.parent.mkdir(parents=True, exist_ok=True)
    with open(target, "ab") as out:
        out.write(source.read_bytes())
    return True


def sync_translations(settings: SyncSettings) -> SyncReport:
    """Download, unpack and merge the translation bundle into the theme directory."""
    report = SyncReport()
    work_dir = Path(tempfile.mkdtemp(prefix="weblate_sync_"))
    try:
        archive = work_dir / "weblate.zip"
        console.print(f"📥 Downloading {settings.url}")
        download_bundle(settings.url, archive)

        extracted = extract_bundle(archive, work_dir / "bundle")

        theme_source = extracted / settings.theme_subdir
        if theme_source.is_dir():
            report.copied = sync_tree(theme_source, settings.target_dir)
            console.print(f"✅ Synced {len(report.copied)} theme files into {settings.target_dir}", style="green")
        else:
            console.print(f"⚠️  Theme directory {settings.theme_subdir} not found in bundle", style="yellow")

        for merge in settings.merges:
            target = settings.target_dir / merge.target
            if append_messages(extracted / merge.source, target):
                report.appended.append(target)
                console.print(f"✅ Appended messages to {target}", style="green")
            else:
                console.print(f"   No messages at {merge.source}, skipping", style="yellow")
    finally:
        if settings.keep_temp:
            console.print(f"📁 Temporary files kept in {work_dir}")
        else:
            shutil.rmtree(work_dir, ignore_errors=True)

    return report


@click.command()
@click.option('--url', default=DEFAULT_BUNDLE_URL, show_default=True, help='Weblate bundle download URL')
@click.option('--target', type=click.Path(file_okay=False, path_type=Path), default=DEFAULT_TARGET_DIR,
              show_default=True, help='Theme directory to merge into')
@click.option('--keep-temp', is_flag=True, help='Keep the downloaded bundle for inspection')
def main(url, target, keep_temp):
    """Weblate Theme Translation Sync Tool"""
    settings = SyncSettings(url=url, target_dir=target, keep_temp=keep_temp)
    try:
        sync_translations(settings)
    except (requests.RequestException, zipfile.BadZipFile) as e:
        console.print(f"❌ Sync failed: {str(e)}", style="red")
        raise SystemExit(1)

    console.print("🎉 Sync complete", style="bold green")


if __name__ == "__main__":
    main()
