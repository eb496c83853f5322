"""
Resolve release versions and compute SHA256 checksums of GitHub release artifacts.

A tap formula pins three artifacts per release: the source tarball and two
prebuilt bottles. This module downloads each of them (following GitHub's
redirects to its object storage) and hashes the bytes, and it finds the
newest ``vMAJOR.MINOR.PATCH`` tag of a repository.

Example:
    sha = fetch_sha256("https://github.com/foxworth-uni/danny/archive/refs/tags/v0.0.8.tar.gz")
    version = detect_latest_version("foxworth-uni/danny")  # "0.0.8"
"""

import hashlib
import logging
import re
import subprocess
from typing import Callable, Iterable, List, NamedTuple, Optional

import requests
from bs4 import BeautifulSoup

logger = logging.getLogger(__name__)

MAX_REDIRECTS = 5
REDIRECT_CODES = (301, 302, 303, 307, 308)
DEFAULT_TIMEOUT = 60
CHUNK_SIZE = 64 * 1024

# Peeled annotated tags end in ^{} and are ignored by the $ anchor.
LS_REMOTE_TAG = re.compile(r"refs/tags/v(\d+\.\d+\.\d+)$", re.MULTILINE)
TAG_HREF = re.compile(r"/(?:releases/tag|tree)/v(\d+\.\d+\.\d+)$")


class FetchError(Exception):
    """Raised when a release artifact cannot be downloaded."""

    def __init__(self, message, status=None):
        super().__init__(message)
        self.status = status


class Artifact(NamedTuple):
    label: str
    url: str


def release_artifacts(repo: str, formula: str, version: str) -> List[Artifact]:
    """
    Return the source tarball and the two bottles published for a release.

    Args:
        repo: GitHub repository, e.g. "foxworth-uni/danny"
        formula: Formula name, used in the bottle file names
        version: Version without the leading "v"
    """
    download = f"https://github.com/{repo}/releases/download/v{version}"
    return [
        Artifact("Source tarball", source_url(repo, version)),
        Artifact(
            "ARM64 bottle (Apple Silicon)",
            f"{download}/{formula}-{version}.arm64_sonoma.bottle.tar.gz",
        ),
        Artifact(
            "x86_64 bottle (Intel)",
            f"{download}/{formula}-{version}.x86_64_sonoma.bottle.tar.gz",
        ),
    ]


def source_url(repo: str, version: str) -> str:
    """
    URL of the source tarball GitHub generates for tag v<version>.

    Args:
        repo: GitHub repository, e.g. "foxworth-uni/danny"
        version: Version without the leading "v"
    """
    return f"https://github.com/{repo}/archive/refs/tags/v{version}.tar.gz"


def fetch_sha256(url: str, session: Optional[requests.Session] = None,
                 timeout: float = DEFAULT_TIMEOUT) -> str:
    """
    Download ``url`` and return the hex SHA256 digest of the response body.

    Redirects are followed by hand so that at most MAX_REDIRECTS hops are
    taken; one more raises FetchError("Too many redirects").

    Raises:
        FetchError: on a non-success status, a redirect without a Location
            header, too many redirects, or any transport error.
    """
    session = session or requests.Session()
    redirects = 0
    current = url

    while True:
        try:
            response = session.get(current, allow_redirects=False, stream=True, timeout=timeout)
        except requests.RequestException as e:
            raise FetchError(f"Error: {e}") from e

        try:
            status = response.status_code
            if 200 <= status < 300:
                digest = hashlib.sha256()
                for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                    digest.update(chunk)
                return digest.hexdigest()

            if status in REDIRECT_CODES:
                redirects += 1
                if redirects > MAX_REDIRECTS:
                    raise FetchError("Too many redirects", status=status)
                location = response.headers.get("Location")
                if not location:
                    raise FetchError(f"Redirect ({status}) without Location header", status=status)
                current = requests.compat.urljoin(current, location)
                logger.debug("Redirect %d (%d) -> %s", redirects, status, current)
                continue

            raise FetchError(f"Failed ({status})", status=status)
        except requests.RequestException as e:
            raise FetchError(f"Error: {e}") from e
        finally:
            response.close()


def version_key(version: str) -> tuple:
    """Sort key for "MAJOR.MINOR.PATCH": "0.0.10" -> (0, 0, 10)."""
    return tuple(int(part) for part in version.split("."))


def latest_version(versions: Iterable[str]) -> Optional[str]:
    """Pick the highest version, comparing components numerically."""
    versions = list(versions)
    if not versions:
        return None
    return max(versions, key=version_key)


def parse_ls_remote(output: str) -> List[str]:
    """
    Extract versions from ``git ls-remote --tags`` output of the form:
        <sha>\trefs/tags/v1.2.3
    """
    return LS_REMOTE_TAG.findall(output)


def parse_tags_page(html: str) -> List[str]:
    """Extract versions from the links on a GitHub tags page."""
    soup = BeautifulSoup(html, "html.parser")
    versions = []
    for link in soup.find_all("a", href=TAG_HREF):
        match = TAG_HREF.search(link.get("href", ""))
        if match and match.group(1) not in versions:
            versions.append(match.group(1))
    return versions


def git_ls_remote_tags(repo: str) -> str:
    """
    Return the raw `git ls-remote --tags` listing of a GitHub repository.

    Args:
        repo: GitHub repository, e.g. "foxworth-uni/danny"

    Raises:
        OSError: if git is not installed.
        subprocess.CalledProcessError: if git exits non-zero.
    """
    result = subprocess.run(
        ["git", "ls-remote", "--tags", f"https://github.com/{repo}.git"],
        capture_output=True, text=True, check=True,
    )
    return result.stdout


def detect_latest_version(repo: str,
                          list_tags: Callable[[str], str] = git_ls_remote_tags,
                          session: Optional[requests.Session] = None,
                          timeout: float = DEFAULT_TIMEOUT) -> Optional[str]:
    """
    Return the newest vX.Y.Z tag of ``repo`` without the "v", or None.

    Tags come from ``git ls-remote``; if git is missing or fails, the
    repository's tags page is scraped instead. That page only lists the
    most recent tags, which is enough to find the newest one.
    """
    try:
        versions = parse_ls_remote(list_tags(repo))
        logger.debug("git ls-remote found %d version tag(s) for %s", len(versions), repo)
        if versions:
            return latest_version(versions)
    except (OSError, subprocess.SubprocessError) as e:
        logger.info("git ls-remote failed for %s: %s", repo, e)

    session = session or requests.Session()
    url = f"https://github.com/{repo}/tags"
    try:
        response = session.get(url, timeout=timeout)
        response.raise_for_status()
    except requests.RequestException as e:
        logger.info("Could not fetch tags page %s: %s", url, e)
        return None

    versions = parse_tags_page(response.text)
    logger.debug("Tags page listed %d version tag(s) for %s", len(versions), repo)
    return latest_version(versions)
