"""
gentrust Core — Creator Parser
================================
Turns the heterogeneous strings discovery hands over (npm package names,
GitHub URLs, bare owner/repo shorthand, git remotes, filesystem paths)
into one closed `Creator` value up front, so nothing downstream has to
branch on string shape.

Normalized creator ids have the form ``<source>:<identifier>`` and are
case-folded:

    npm:left-pad
    npm:@scope/pkg
    github:owner/repo
    git:gitlab.com/group/project
    local:/home/me/templates/app

Import from: gentrust.core.creator
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass
from typing import Optional, Tuple

from gentrust.core.types import CreatorSource, InvalidCreatorIdError

__all__ = ['Creator', 'parse_creator', 'normalize_creator_id', 'is_valid_creator_id']

MAX_RAW_LENGTH = 512

_NPM_NAME = re.compile(r'^(@[a-z0-9][a-z0-9._~-]*/)?[a-z0-9][a-z0-9._~-]*$')
_GH_OWNER = re.compile(r'^[a-z0-9](?:[a-z0-9-]{0,38})$')
_GH_REPO = re.compile(r'^[a-z0-9._-]{1,100}$')
_GH_URL = re.compile(
    r'^(?:https?://|git://|ssh://git@|git\+https://)?(?:www\.)?github\.com[/:]'
    r'(?P<owner>[^/\s]+)/(?P<repo>[^/\s#?]+)', re.I)
_SCP_REMOTE = re.compile(r'^[\w.-]+@(?P<host>[\w.-]+):(?P<path>[^\s]+)$')
_URL_REMOTE = re.compile(r'^(?:https?|ssh|git|git\+https|git\+ssh)://(?:[^@/\s]+@)?(?P<rest>[^\s]+)$', re.I)
_WINDOWS_DRIVE = re.compile(r'^[a-z]:[\\/]', re.I)


@dataclass(frozen=True)
class Creator:
    """An external identity that authored or published a template."""
    source: CreatorSource
    identifier: str

    @property
    def creator_id(self) -> str:
        return f"{self.source.value}:{self.identifier}"

    @property
    def is_local(self) -> bool:
        return self.source == CreatorSource.LOCAL

    def __str__(self) -> str:
        return self.creator_id


def _fail(raw: str, why: str) -> InvalidCreatorIdError:
    return InvalidCreatorIdError(f"Invalid creator id {raw!r}: {why}")


def _strip_ref(value: str) -> str:
    """Drop '#branch' fragments; refs do not change who the creator is."""
    return value.split('#', 1)[0]


def _github(owner: str, repo: str, raw: str) -> Creator:
    owner = owner.lower()
    repo = repo.lower()
    if repo.endswith('.git'):
        repo = repo[:-4]
    if not _GH_OWNER.match(owner) or owner.endswith('-'):
        raise _fail(raw, f"bad GitHub owner '{owner}'")
    if not _GH_REPO.match(repo) or repo in ('.', '..'):
        raise _fail(raw, f"bad GitHub repository '{repo}'")
    return Creator(CreatorSource.GITHUB, f"{owner}/{repo}")


def _parse_github(rest: str, raw: str) -> Creator:
    rest = _strip_ref(rest.strip())
    match = _GH_URL.match(rest)
    if match:
        return _github(match.group('owner'), match.group('repo'), raw)
    parts = rest.strip('/').split('/')
    if len(parts) != 2:
        raise _fail(raw, "expected owner/repo")
    return _github(parts[0], parts[1].split('@', 1)[0], raw)


def _parse_npm(rest: str, raw: str) -> Creator:
    name = rest.strip().lower()
    # Strip a version or tag suffix (name@1.2.3, @scope/name@latest)
    at = name.rfind('@')
    if at > 0:
        name = name[:at]
    if not name or len(name) > 214 or not _NPM_NAME.match(name):
        raise _fail(raw, "not a valid npm package name")
    return Creator(CreatorSource.NPM, name)


def _parse_git(rest: str, raw: str) -> Creator:
    value = _strip_ref(rest.strip())
    if not value or any(c.isspace() for c in value):
        raise _fail(raw, "empty or whitespace in git remote")
    match = _GH_URL.match(value)
    if match:
        return _github(match.group('owner'), match.group('repo'), raw)

    scp = _SCP_REMOTE.match(value)
    url = _URL_REMOTE.match(value)
    if scp:
        location = f"{scp.group('host')}/{scp.group('path')}"
    elif url:
        location = url.group('rest')
    else:
        location = value
    location = location.lower().rstrip('/')
    if location.endswith('.git'):
        location = location[:-4]
    if '/' not in location or location.startswith('/') or '..' in location.split('/'):
        raise _fail(raw, "git remote must name a host and a repository path")
    if location.startswith('github.com/'):
        parts = location.split('/')
        if len(parts) >= 3:
            return _github(parts[1], parts[2], raw)
    return Creator(CreatorSource.GIT, location)


def _parse_local(rest: str, raw: str) -> Creator:
    value = rest.strip()
    if not value:
        raise _fail(raw, "empty local path")
    if value.startswith('~'):
        value = os.path.expanduser(value)
    path = os.path.normpath(os.path.abspath(value))
    return Creator(CreatorSource.LOCAL, path.replace('\\', '/').lower())


def _split_prefix(value: str) -> Tuple[Optional[str], str]:
    head, sep, rest = value.partition(':')
    if sep and head.lower() in {s.value for s in CreatorSource}:
        return head.lower(), rest
    return None, value


def parse_creator(raw: str) -> Creator:
    """Parse any supported creator string into a Creator.

    Raises:
        InvalidCreatorIdError: if the string matches no supported form.
    """
    if isinstance(raw, Creator):
        return raw
    if not isinstance(raw, str):
        raise InvalidCreatorIdError(f"Creator id must be a string, got {type(raw).__name__}")
    value = raw.strip()
    if not value:
        raise _fail(raw, "empty")
    if len(value) > MAX_RAW_LENGTH:
        raise _fail(raw[:40] + '...', "too long")
    if any(ord(c) < 32 for c in value):
        raise _fail(raw, "control characters")

    prefix, rest = _split_prefix(value)
    if prefix == 'npm':
        return _parse_npm(rest, raw)
    if prefix == 'github':
        return _parse_github(rest, raw)
    if prefix == 'git':
        return _parse_git(rest, raw)
    if prefix == 'local':
        return _parse_local(rest, raw)

    # Untagged forms, most specific first
    if _GH_URL.match(value):
        return _parse_github(value, raw)
    if _URL_REMOTE.match(value) or _SCP_REMOTE.match(value):
        return _parse_git(value, raw)
    if value.startswith(('/', './', '../', '~', '.\\', '..\\')) or value == '.' \
            or _WINDOWS_DRIVE.match(value):
        return _parse_local(value, raw)
    if value.startswith('@'):
        return _parse_npm(value, raw)
    if value.count('/') == 1:
        return _parse_github(value, raw)
    return _parse_npm(value, raw)


def normalize_creator_id(raw: str) -> str:
    """Return the canonical ``source:identifier`` key for a creator string."""
    return parse_creator(raw).creator_id


def is_valid_creator_id(raw: str) -> bool:
    try:
        parse_creator(raw)
        return True
    except InvalidCreatorIdError:
        return False
