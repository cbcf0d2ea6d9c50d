"""
URL normalization utilities for consistent cache keys.

This module provides functions to normalize GitHub repository URLs and user
logins so that equivalent inputs (trailing slashes, case differences, ".git"
suffixes, bare "owner/repo" strings) map to the same cache key.
"""
import re
from typing import Tuple
from urllib.parse import urlparse, urlunparse

from vibe_assistant.core.errors import InvalidTargetError

GITHUB_HOSTS = ("github.com", "www.github.com")

# owner/repo without a scheme or host
REPO_SHORTHAND_PATTERN = re.compile(r"^[A-Za-z0-9_.-]+/[A-Za-z0-9_.-]+$")
SSH_URL_PATTERN = re.compile(r"^git@github\.com:([^/]+)/([^/]+?)(?:\.git)?/?$", re.IGNORECASE)
# 1-39 chars, alphanumeric and hyphens, cannot start/end with hyphen
USERNAME_PATTERN = re.compile(r"^[A-Za-z0-9](?:[A-Za-z0-9-]{0,37}[A-Za-z0-9])?$")
NAME_PATTERN = re.compile(r"^[A-Za-z0-9_.-]+$")


def parse_github_url(url: str) -> Tuple[str, str]:
    """
    Extract (owner, repo) from any of the accepted repository locators.

    Supports:
    - owner/repo
    - github.com/owner/repo
    - https://github.com/owner/repo(.git)(/tree/main/...)
    - git@github.com:owner/repo.git

    Raises:
        InvalidTargetError: If the input is empty or not a GitHub repository.
    """
    if not url or not isinstance(url, str) or not url.strip():
        raise InvalidTargetError("Repository URL is required")

    candidate = url.strip()

    ssh_match = SSH_URL_PATTERN.match(candidate)
    if ssh_match:
        return ssh_match.group(1), ssh_match.group(2)

    is_shorthand = (
        REPO_SHORTHAND_PATTERN.match(candidate)
        and candidate.split("/", 1)[0].lower() not in GITHUB_HOSTS
    )
    if is_shorthand:
        candidate = f"https://github.com/{candidate}"
    elif "://" not in candidate:
        candidate = f"https://{candidate}"

    parsed = urlparse(candidate)
    if parsed.scheme.lower() not in ("http", "https") or parsed.netloc.lower() not in GITHUB_HOSTS:
        raise InvalidTargetError(f"Not a GitHub repository URL: {url}")

    # Anything after owner/repo (tree/main, issues, ...) is ignored
    parts = [p for p in parsed.path.split("/") if p]
    if len(parts) < 2:
        raise InvalidTargetError(f"Not a GitHub repository URL: {url}")

    owner, repo = parts[0], parts[1]
    if repo.lower().endswith(".git"):
        repo = repo[:-4]
    if not NAME_PATTERN.match(owner) or not NAME_PATTERN.match(repo):
        raise InvalidTargetError(f"Not a GitHub repository URL: {url}")

    return owner, repo


def normalize_github_url(url: str) -> str:
    """
    Normalize a GitHub repository locator to a consistent format.

    This ensures that the following are treated as identical:
    - https://github.com/user/repo
    - https://github.com/user/repo/
    - https://GitHub.com/user/repo.git
    - user/repo

    Args:
        url: The GitHub repository locator to normalize.

    Returns:
        A canonical https URL in lowercase with no trailing slash.

    Examples:
        >>> normalize_github_url("https://GitHub.com/User/Repo/")
        'https://github.com/user/repo'

        >>> normalize_github_url("User/Repo")
        'https://github.com/user/repo'
    """
    owner, repo = parse_github_url(url)

    # Rebuild without query params or fragments
    return urlunparse((
        "https",
        "github.com",
        f"/{owner.lower()}/{repo.lower()}",
        "",  # params
        "",  # query
        ""   # fragment
    ))


def normalize_github_username(username: str) -> str:
    """Trim and lowercase a GitHub login, rejecting invalid ones."""
    if not username or not isinstance(username, str) or not username.strip():
        raise InvalidTargetError("Username is required")

    candidate = username.strip()
    if not USERNAME_PATTERN.match(candidate):
        raise InvalidTargetError(f"Invalid GitHub username: {username}")

    return candidate.lower()


def is_github_username(value: str) -> bool:
    """True if ``value`` is a bare GitHub login rather than a repository locator."""
    return isinstance(value, str) and bool(USERNAME_PATTERN.match(value.strip()))
