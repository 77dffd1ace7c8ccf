# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
Revision Oracle

Turns a FlakeTarget into UpdateProposals by pairing the pinned reference
from flake.lock with a candidate reference from a RevisionSource:

- RegistrySource: the rev the user's Nix registry pins for the input's id
- NixMetadataSource: `nix flake metadata` on the input's upstream URL
- GitHubSource: the GitHub commits API (github inputs only)
- PinnedSource: a ref or rev given on the command line

Sources return None when they have nothing to say about an input; they
raise OracleUnavailableError when the lookup itself fails.
"""

from __future__ import annotations

import json
import subprocess
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

import httpx

from .config import FlakeBumpConfig
from .exceptions import OracleUnavailableError, retry_on_error
from .flakeref import upstream_url
from .lockfile import FlakeLockfile, LockedInput
from .logger import get_logger
from .models import FlakeTarget, Reference, UpdateProposal

logger = get_logger("oracle")

REGISTRY_VERSION = 2


# =============================================================================
# Sources
# =============================================================================

class RevisionSource(ABC):
    """Where candidate references come from."""

    name: str = "abstract"

    @abstractmethod
    def latest(self, locked: LockedInput) -> Optional[Reference]:
        """Newest reference for the input, or None if unknown to this source."""


class PinnedSource(RevisionSource):
    """Fixed candidate given by the user (--to-ref / --to-rev)."""

    name = "explicit"

    def __init__(self, ref: Optional[str] = None, rev: Optional[str] = None):
        if not ref and not rev:
            raise ValueError("PinnedSource needs a ref or a rev")
        self.reference = Reference(rev=rev, ref=ref)

    def latest(self, locked: LockedInput) -> Optional[Reference]:
        return self.reference


class RegistrySource(RevisionSource):
    """Revisions pinned by exact indirect entries of the Nix registry."""

    name = "registry"

    def __init__(self, registry_file: Path):
        self.registry_file = registry_file

    def _load(self) -> List[Dict[str, Any]]:
        try:
            with open(self.registry_file, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise OracleUnavailableError(
                f"Cannot read Nix registry {self.registry_file}", source=self.name, cause=e
            )

        version = data.get("version") if isinstance(data, dict) else None
        if version != REGISTRY_VERSION:
            raise OracleUnavailableError(
                f"Unsupported registry version {version}", source=self.name
            )
        return data.get("flakes", [])

    def latest(self, locked: LockedInput) -> Optional[Reference]:
        for entry in self._load():
            from_ = entry.get("from", {})
            if not entry.get("exact") or from_.get("type") != "indirect":
                continue
            if from_.get("id") != locked.registry_id:
                continue

            to = entry.get("to", {})
            if not to.get("rev"):
                logger.debug(f"Registry entry for {locked.name} pins no rev")
                return None
            return Reference(rev=to["rev"], last_modified=to.get("lastModified"))

        return None


class NixMetadataSource(RevisionSource):
    """Resolve the input's upstream with `nix flake metadata --json`."""

    name = "nix"

    def __init__(self, nix_binary: str = "nix", timeout_seconds: int = 60):
        self.nix_binary = nix_binary
        self.timeout_seconds = timeout_seconds

    def latest(self, locked: LockedInput) -> Optional[Reference]:
        url = upstream_url(locked.original)
        cmd = [
            self.nix_binary,
            "--extra-experimental-features",
            "nix-command flakes",
            "flake",
            "metadata",
            "--json",
            "--refresh",
            url,
        ]
        logger.debug(f"Running {' '.join(cmd)}")

        try:
            result = subprocess.run(
                cmd, capture_output=True, text=True, timeout=self.timeout_seconds
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            raise OracleUnavailableError(
                f"Failed to query {url}", source=self.name, input_name=locked.name, cause=e
            )

        if result.returncode != 0:
            raise OracleUnavailableError(
                f"nix flake metadata failed for {url}",
                source=self.name,
                input_name=locked.name,
                details={"stderr": result.stderr.strip()},
            )

        try:
            metadata = json.loads(result.stdout)
            rev = metadata.get("revision") or metadata["locked"]["rev"]
        except (json.JSONDecodeError, KeyError, TypeError, AttributeError) as e:
            raise OracleUnavailableError(
                f"Malformed metadata for {url}", source=self.name, input_name=locked.name, cause=e
            )

        return Reference(
            rev=rev,
            ref=locked.original.get("ref"),
            last_modified=metadata.get("lastModified"),
        )


class GitHubSource(RevisionSource):
    """Head commit of the declared branch from the GitHub REST API."""

    name = "github"

    def __init__(
        self,
        api_url: str = "https://api.github.com",
        token: Optional[str] = None,
        timeout_seconds: int = 60,
        retries: int = 2,
        client: Optional[httpx.Client] = None,
    ):
        headers = {"Accept": "application/vnd.github+json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self.client = client or httpx.Client(
            base_url=api_url, headers=headers, timeout=timeout_seconds
        )
        self._get = retry_on_error(
            max_retries=retries, delay_ms=500, exceptions=(httpx.TransportError,)
        )(self.client.get)

    def latest(self, locked: LockedInput) -> Optional[Reference]:
        if locked.type != "github":
            return None

        owner = locked.original["owner"]
        repo = locked.original["repo"]
        ref = locked.original.get("ref") or "HEAD"
        path = f"/repos/{owner}/{repo}/commits/{ref}"

        try:
            response = self._get(path)
        except httpx.HTTPError as e:
            raise OracleUnavailableError(
                f"GitHub request failed for {owner}/{repo}",
                source=self.name,
                input_name=locked.name,
                cause=e,
            )

        if response.status_code != 200:
            raise OracleUnavailableError(
                f"GitHub returned {response.status_code} for {owner}/{repo}@{ref}",
                source=self.name,
                input_name=locked.name,
            )

        try:
            body = response.json()
            sha = body["sha"]
            date = body["commit"]["committer"]["date"]
            last_modified = int(datetime.fromisoformat(date.replace("Z", "+00:00")).timestamp())
        except (ValueError, KeyError, TypeError) as e:
            raise OracleUnavailableError(
                f"Malformed GitHub response for {owner}/{repo}",
                source=self.name,
                input_name=locked.name,
                cause=e,
            )

        return Reference(rev=sha, ref=locked.original.get("ref"), last_modified=last_modified)


def build_source(
    config: FlakeBumpConfig,
    to_ref: Optional[str] = None,
    to_rev: Optional[str] = None,
) -> RevisionSource:
    """Pick the revision source from the command line and configuration."""
    if to_ref or to_rev:
        return PinnedSource(ref=to_ref, rev=to_rev)

    oracle = config.oracle
    if oracle.source == "nix":
        return NixMetadataSource(oracle.nix_binary, oracle.timeout_seconds)
    if oracle.source == "github":
        return GitHubSource(
            api_url=oracle.github_api_url,
            token=oracle.github_token,
            timeout_seconds=oracle.timeout_seconds,
            retries=oracle.retries,
        )
    return RegistrySource(config.paths.registry_file)


# =============================================================================
# Oracle
# =============================================================================

class RevisionOracle:
    """Compare pinned and candidate references for a target's inputs."""

    def __init__(self, source: RevisionSource):
        self.source = source

    def propose(self, target: FlakeTarget) -> List[UpdateProposal]:
        """
        Build proposals for the target.

        With an input name exactly one proposal comes back (possibly a
        no-change marker). Without one, every supported input the source
        knows about gets a proposal.

        Raises:
            InputNotFoundError: The named input is not in flake.lock
            OracleUnavailableError: Lock file or revision lookup failed
        """
        if not target.flake_lock.exists():
            raise OracleUnavailableError(
                f"{target.directory} has no flake.lock",
                source="lockfile",
                input_name=target.input_name,
            )

        lockfile = FlakeLockfile.load(target.flake_lock)

        if target.input_name:
            locked = lockfile.get_input(target.input_name)
            if not locked.supported:
                raise OracleUnavailableError(
                    f"Input {locked.name} of type {locked.type} is not supported",
                    source=self.source.name,
                    input_name=locked.name,
                )
            return [self._propose(locked, strict=True)]

        proposals = []
        for locked in lockfile:
            if not locked.supported:
                logger.debug(f"Skipping {locked.name} ({locked.type}) in {target.directory}")
                continue
            proposal = self._propose(locked, strict=False)
            if proposal is not None:
                proposals.append(proposal)
        return proposals

    def _propose(self, locked: LockedInput, strict: bool) -> Optional[UpdateProposal]:
        candidate = self.source.latest(locked)
        if candidate is None:
            if strict:
                raise OracleUnavailableError(
                    f"No {self.source.name} revision known for {locked.name}",
                    source=self.source.name,
                    input_name=locked.name,
                )
            logger.debug(f"No {self.source.name} revision known for {locked.name}")
            return None

        current = locked.current
        if candidate.same_as(current):
            return UpdateProposal.up_to_date(locked.name, current)

        # an explicit ref or rev is written into the declaration instead
        lock_only = locked.follows_registry and not isinstance(self.source, PinnedSource)

        logger.info(f"{locked.name}: {current} -> {candidate}")
        return UpdateProposal(
            input_name=locked.name, current=current, candidate=candidate, lock_only=lock_only
        )
