"""Discovery and persistence of long-lived GitHub OAuth credentials.

Three documents are consulted, in this order, and the first one that yields
a token for the requested host wins:

1. ``apps.json`` -- written by the Copilot editor plugins. Keys are
   ``"<host>"`` or ``"<host>:<clientId>"``; values carry ``oauth_token``.
   When a host has several entries an OAuth token (``gho_``) is preferred
   over a user-to-server token (``ghu_``).
2. ``hosts.json`` -- older plugin format. Either ``{"<host>": {"oauth_token":
   ...}}`` or the flattened ``{"<host>:<user>": "<token>"}``.
3. ``~/.copilot-auth.json`` -- written by :meth:`CredentialStore.persist`
   after a successful device flow.

Reading is tolerant: a missing, unreadable, or malformed document is treated
as absent and never raises. Writing is best-effort: the local document is
written atomically with ``0o600`` permissions, and a failed write is logged
and reported through the return value only.

See Also:
    :mod:`copilot_auth.config` -- where the documents live.
    :class:`~copilot_auth.auth.manager.AuthManager` -- the consumer.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from pydantic import ValidationError

from copilot_auth.config import get_config_paths, get_local_auth_path
from copilot_auth.models import (
    OAUTH_TOKEN_PREFIX,
    USER_TOKEN_PREFIX,
    AppsEntry,
    CredentialKind,
    CredentialSource,
    HostsEntry,
    LocalAuthDocument,
    StoredCredential,
)

logger = logging.getLogger(__name__)


def read_document(path: Path) -> Optional[dict[str, Any]]:
    """Read a JSON object from *path*.

    Returns:
        The parsed object, or ``None`` if the file does not exist, cannot
        be read, is not valid JSON, or does not contain a JSON object.
    """
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return None
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
        logger.debug("Ignoring unreadable credential document %s: %s", path, exc)
        return None
    if not isinstance(data, dict):
        logger.debug("Ignoring credential document %s: not a JSON object", path)
        return None
    return data


def _matches_host(key: str, host: str) -> bool:
    return key == host or key.startswith(f"{host}:")


def extract_from_apps(doc: dict[str, Any], host: str) -> Optional[StoredCredential]:
    """Pick the credential for *host* out of an ``apps.json`` document.

    Entries that fail :class:`~copilot_auth.models.AppsEntry` validation
    are skipped. Among the remaining matches the first OAuth token wins,
    otherwise the first match of any kind.
    """
    matches: list[StoredCredential] = []
    for key, value in doc.items():
        if not _matches_host(key, host):
            continue
        try:
            entry = AppsEntry.model_validate(value)
        except ValidationError:
            continue
        matches.append(
            StoredCredential.build(host, entry.oauth_token, CredentialSource.APPS)
        )

    for credential in matches:
        if credential.kind is CredentialKind.OAUTH:
            return credential
    return matches[0] if matches else None


def extract_from_hosts(doc: dict[str, Any], host: str) -> Optional[StoredCredential]:
    """Pick the credential for *host* out of a ``hosts.json`` document.

    The nested ``{"<host>": {"oauth_token": ...}}`` form is checked first,
    then the flattened ``"<host>:<user>"`` keys, whose string values are
    only accepted when they carry a GitHub token prefix.
    """
    nested = doc.get(host)
    if nested is not None:
        try:
            entry = HostsEntry.model_validate(nested)
        except ValidationError:
            pass
        else:
            return StoredCredential.build(host, entry.oauth_token, CredentialSource.HOSTS)

    for key, value in doc.items():
        if not key.startswith(f"{host}:") or not isinstance(value, str):
            continue
        if value.startswith((OAUTH_TOKEN_PREFIX, USER_TOKEN_PREFIX)):
            return StoredCredential.build(host, value, CredentialSource.HOSTS)
    return None


def extract_from_local(doc: dict[str, Any], host: str) -> Optional[StoredCredential]:
    """Read the token saved by a previous device flow.

    The local document is not scoped to a host; whatever it holds is
    returned for *host*.
    """
    try:
        local = LocalAuthDocument.model_validate(doc)
    except ValidationError:
        return None
    return StoredCredential.build(host, local.oauth_token, CredentialSource.LOCAL)


class CredentialStore:
    """Resolve and persist long-lived OAuth credentials.

    Args:
        apps_path: Override for ``apps.json``. Defaults to the platform path.
        hosts_path: Override for ``hosts.json``. Defaults to the platform path.
        local_path: Override for the device-flow token file. Defaults to
            ``~/.copilot-auth.json``.

    Example::

        store = CredentialStore()
        credential = store.resolve("github.com")
        if credential is not None:
            print(credential.source, credential.masked_token)
    """

    def __init__(
        self,
        apps_path: Optional[Path] = None,
        hosts_path: Optional[Path] = None,
        local_path: Optional[Path] = None,
    ) -> None:
        paths = get_config_paths()
        self._apps_path = apps_path or paths.apps_json
        self._hosts_path = hosts_path or paths.hosts_json
        self._local_path = local_path or get_local_auth_path()

    @property
    def apps_path(self) -> Path:
        return self._apps_path

    @property
    def hosts_path(self) -> Path:
        return self._hosts_path

    @property
    def local_path(self) -> Path:
        return self._local_path

    def resolve(self, host: str) -> Optional[StoredCredential]:
        """Return the first credential for *host* in precedence order.

        Args:
            host: Bare GitHub host, e.g. ``"github.com"``.

        Returns:
            The selected :class:`~copilot_auth.models.StoredCredential`, or
            ``None`` if no document holds a usable token.
        """
        sources = (
            (self._apps_path, extract_from_apps),
            (self._hosts_path, extract_from_hosts),
            (self._local_path, extract_from_local),
        )
        for path, extract in sources:
            doc = read_document(path)
            if doc is None:
                continue
            credential = extract(doc, host)
            if credential is not None:
                logger.debug(
                    "Found %s credential %s in %s",
                    credential.kind.value,
                    credential.masked_token,
                    path,
                )
                return credential
        return None

    def persist(self, token: str) -> bool:
        """Save *token* to the local document with ``0o600`` permissions.

        Persistence is best-effort: write errors are logged and swallowed
        so that a read-only home directory never breaks an authorized
        session.

        Args:
            token: The long-lived OAuth token returned by the device flow.

        Returns:
            ``True`` if the document was written, ``False`` otherwise.
        """
        document = LocalAuthDocument(
            oauth_token=token, updated_at=datetime.now(timezone.utc)
        )
        text = json.dumps(document.model_dump(mode="json"), indent=2) + "\n"
        try:
            _write_private(self._local_path, text)
        except OSError as exc:
            logger.warning("Could not save OAuth token to %s: %s", self._local_path, exc)
            return False
        logger.debug("Saved OAuth token to %s", self._local_path)
        return True

    def clear(self) -> bool:
        """Delete the local document. Returns ``True`` if a file was removed."""
        try:
            self._local_path.unlink()
        except FileNotFoundError:
            return False
        except OSError as exc:
            logger.warning("Could not remove %s: %s", self._local_path, exc)
            return False
        return True


def _write_private(path: Path, text: str) -> None:
    """Atomically write *text* to *path*, readable by the owner only.

    Content goes to a temporary file in the same directory whose mode is
    set to ``0o600`` before anything is written, then the file is renamed
    over *path*.
    """
    fd = None
    tmp_path: Optional[str] = None
    try:
        fd = tempfile.NamedTemporaryFile(
            mode="w",
            dir=path.parent,
            prefix=f".{path.name}.",
            suffix=".tmp",
            delete=False,
            encoding="utf-8",
        )
        tmp_path = fd.name
        os.chmod(tmp_path, 0o600)
        fd.write(text)
        fd.flush()
        os.fsync(fd.fileno())
        fd.close()
        fd = None
        os.replace(tmp_path, path)
    except BaseException:
        if fd is not None:
            fd.close()
        if tmp_path is not None:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
        raise
