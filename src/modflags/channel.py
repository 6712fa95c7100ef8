"""
Propagation channel - write-once/read-many handoff between build steps.

Each run of a module's build step publishes its serialized configuration once,
after compilation succeeds. Later build steps of dependent modules look it up
by key, any number of times.

Two implementations:
- FileChannel: one JSON file per key in a session directory. Visible across
  process boundaries, which is the whole point: build steps are independent
  processes, so mutating the process environment would never reach them.
- MemoryChannel: dict-backed, for a single process (tests, in-process drivers).

Design:
    Publishing writes a temporary file and hard-links it to the final name.
    The link either creates the key atomically or fails because the key
    exists, so readers never see a partial payload and a second writer cannot
    silently replace the first one. Republishing a byte-identical payload is
    accepted.

    A build step owns its own key: when the orchestrator reruns it (changed
    sources or flags), it publishes with replace=True and the new payload is
    swapped in with os.replace, which is just as atomic for readers.
"""

import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import Optional, Protocol

from .errors import ChannelError
from .paths import get_session_dir

logger = logging.getLogger(__name__)

PAYLOAD_SUFFIX = ".json"


class PropagationChannel(Protocol):
    """Session-scoped key-value store carrying published configurations."""

    def publish(self, key: str, payload: str, replace: bool = False) -> None: ...

    def lookup(self, key: str) -> Optional[str]: ...

    def keys(self) -> list[str]: ...


class MemoryChannel:
    """In-process channel with the same publish semantics as FileChannel."""

    def __init__(self) -> None:
        self._store: dict[str, str] = {}

    def publish(self, key: str, payload: str, replace: bool = False) -> None:
        existing = self._store.get(key)
        if existing is not None and not replace:
            if existing == payload:
                logger.debug(f"Key {key} already published with identical payload")
                return
            raise ChannelError(f"Key {key} was already published with a different configuration")
        self._store[key] = payload
        logger.debug(f"Published {key} ({len(payload)} bytes) to memory channel")

    def lookup(self, key: str) -> Optional[str]:
        return self._store.get(key)

    def keys(self) -> list[str]:
        return sorted(self._store)

    def clear(self) -> None:
        self._store.clear()


class FileChannel:
    """Cross-process channel backed by a session directory.

    Attributes:
        session_dir: Directory holding one <key>.json file per published module
    """

    def __init__(self, session_dir: Path):
        self.session_dir = Path(session_dir)

    def _path_for(self, key: str) -> Path:
        if not key or "/" in key or "\\" in key or key in (".", ".."):
            raise ChannelError(f"Invalid channel key: {key!r}")
        return self.session_dir / f"{key}{PAYLOAD_SUFFIX}"

    def publish(self, key: str, payload: str, replace: bool = False) -> None:
        """Publish a payload under key.

        Args:
            key: Propagation key
            payload: Serialized configuration
            replace: Atomically replace an existing payload instead of failing

        Raises:
            ChannelError: If a different payload is already published under key
                and replace is False, or the session directory cannot be written
        """
        target = self._path_for(key)
        try:
            self.session_dir.mkdir(parents=True, exist_ok=True)
            fd, temp_name = tempfile.mkstemp(prefix=f".{key}.", suffix=".tmp", dir=self.session_dir)
        except OSError as e:
            raise ChannelError(f"Cannot write to session directory {self.session_dir}: {e}") from e

        temp_file = Path(temp_name)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
            if replace:
                try:
                    os.replace(temp_file, target)
                except OSError as e:
                    raise ChannelError(f"Failed to publish {key} to {target}: {e}") from e
                logger.info(f"Published {key} to {target} (replacing any previous payload)")
                return
            try:
                os.link(temp_file, target)
            except FileExistsError:
                existing = self.lookup(key)
                if existing == payload:
                    logger.debug(f"Key {key} already published with identical payload")
                    return
                raise ChannelError(f"Key {key} was already published with a different configuration ({target})")
            except OSError as e:
                raise ChannelError(f"Failed to publish {key} to {target}: {e}") from e
        finally:
            temp_file.unlink(missing_ok=True)

        logger.info(f"Published {key} to {target}")

    def lookup(self, key: str) -> Optional[str]:
        """Return the payload published under key, or None if nothing is published.

        Raises:
            ChannelError: If the payload exists but cannot be read
        """
        target = self._path_for(key)
        try:
            return target.read_text(encoding="utf-8")
        except FileNotFoundError:
            logger.debug(f"No payload for {key} in {self.session_dir}")
            return None
        except (OSError, UnicodeDecodeError) as e:
            raise ChannelError(f"Failed to read {target}: {e}") from e

    def keys(self) -> list[str]:
        if not self.session_dir.is_dir():
            return []
        return sorted(
            p.name[: -len(PAYLOAD_SUFFIX)]
            for p in self.session_dir.iterdir()
            if p.is_file() and p.name.endswith(PAYLOAD_SUFFIX) and not p.name.startswith(".")
        )

    def clear(self) -> None:
        """Remove the whole session directory."""
        if self.session_dir.exists():
            shutil.rmtree(self.session_dir)
            logger.info(f"Removed session directory {self.session_dir}")


def get_default_channel() -> FileChannel:
    """Return the channel for the current build session.

    Raises:
        EnvironmentError: If no build session can be determined (see paths.get_session_dir)
    """
    return FileChannel(get_session_dir())
