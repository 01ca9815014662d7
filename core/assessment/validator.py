"""
Validator contract, registry and runner.

- Validator: one pluggable, read-only check producing Findings
- Registry: name -> validator, duplicate names rejected, safe for concurrent reads
- Runner: executes the selected validators one after another and turns a failing
  validator into a single FAIL finding instead of aborting the assessment
"""

from __future__ import annotations

import importlib
import logging
import pkgutil
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Type

from core.assessment.cancellation import CancellationToken, CancelledError
from core.assessment.cluster import ClusterReader
from core.assessment.models import STATUS_FAIL, Finding, FindingStatus
from core.assessment.profiles import Profile

logger = logging.getLogger(__name__)


# -----------------------------
# Errors
# -----------------------------

class AlreadyRegisteredError(ValueError):
    def __init__(self, name: str):
        super().__init__(f"validator {name!r} already registered")
        self.name = name


class PartialValidationError(Exception):
    """Raised by a validator that could only complete part of its checks."""

    def __init__(self, message: str, findings: Optional[Sequence[Finding]] = None):
        super().__init__(message)
        self.findings: List[Finding] = list(findings or [])


# -----------------------------
# Contract
# -----------------------------

class Validator(ABC):
    """
    Base class for every check.

    Implementations must be strictly read-only against the cluster and must not keep
    state between calls. Failure is signalled by raising; the Runner decides how a
    failure is reported.
    """

    name: str = ""
    category: str = ""
    description: str = ""

    @abstractmethod
    def validate(self, ctx: CancellationToken, reader: ClusterReader, profile: Profile) -> List[Finding]:
        ...

    def finding(
        self,
        *,
        id: str,
        status: FindingStatus,
        title: str,
        description: str,
        **extra,
    ) -> Finding:
        return Finding(
            id=id,
            validator=self.name,
            category=self.category,
            status=status,
            title=title,
            description=description,
            **extra,
        )

    def __repr__(self) -> str:
        return f"<{type(self).__name__} name={self.name!r}>"


# -----------------------------
# Registry
# -----------------------------

class Registry:
    def __init__(self, validators: Iterable[Validator] = ()):
        self._lock = threading.RLock()
        self._validators: Dict[str, Validator] = {}
        for v in validators:
            self.register(v)

    def register(self, v: Validator) -> None:
        if not v.name:
            raise ValueError(f"{type(v).__name__} has no name")
        with self._lock:
            if v.name in self._validators:
                raise AlreadyRegisteredError(v.name)
            self._validators[v.name] = v

    def get(self, name: str) -> Optional[Validator]:
        with self._lock:
            return self._validators.get(name)

    def list(self) -> List[Validator]:
        with self._lock:
            return list(self._validators.values())

    def names(self) -> List[str]:
        with self._lock:
            return list(self._validators)

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._validators

    def __len__(self) -> int:
        with self._lock:
            return len(self._validators)


_default_registry = Registry()


def register(cls: Type[Validator]) -> Type[Validator]:
    """Class decorator: instantiate the validator and add it to the default registry."""
    _default_registry.register(cls())
    return cls


def load_default_validators(package: str = "validators") -> Registry:
    """
    Import every module of `package` so each validator self-registers.

    A duplicate name raises AlreadyRegisteredError; start-up should not continue
    with an inconsistent registry.
    """
    pkg = importlib.import_module(package)
    for mod in pkgutil.iter_modules(pkg.__path__):
        importlib.import_module(f"{package}.{mod.name}")
    logger.info("Registered validators: count=%s names=%s", len(_default_registry), sorted(_default_registry.names()))
    return _default_registry


# -----------------------------
# Runner
# -----------------------------

@dataclass
class ValidatorRun:
    validator: str
    category: str
    findings: int
    duration_seconds: float
    error: Optional[str] = None


def error_finding(v: Validator, err: BaseException) -> Finding:
    return Finding(
        id=f"{v.name}-error",
        validator=v.name,
        category=v.category,
        status=STATUS_FAIL,
        title=f"Validator {v.name} encountered an error",
        description=f"The validator failed to complete: {err}",
        impact="Assessment results for this validator are incomplete.",
    )


class Runner:
    def __init__(self, registry: Registry, reader: ClusterReader):
        self.registry = registry
        self.reader = reader

    def select(self, validator_names: Optional[Sequence[str]] = None) -> List[Validator]:
        if not validator_names:
            return self.registry.list()

        selected: List[Validator] = []
        for name in validator_names:
            v = self.registry.get(name)
            if v is None:
                logger.info("Validator not found, skipping: validator=%s", name)
                continue
            selected.append(v)
        return selected

    def run(
        self,
        ctx: CancellationToken,
        profile: Profile,
        validator_names: Optional[Sequence[str]] = None,
    ) -> List[Finding]:
        findings, _ = self.run_with_stats(ctx, profile, validator_names)
        return findings

    def run_with_stats(
        self,
        ctx: CancellationToken,
        profile: Profile,
        validator_names: Optional[Sequence[str]] = None,
    ) -> Tuple[List[Finding], List[ValidatorRun]]:
        all_findings: List[Finding] = []
        runs: List[ValidatorRun] = []

        for v in self.select(validator_names):
            ctx.raise_if_cancelled()
            logger.info("Running validator: validator=%s category=%s", v.name, v.category)
            started = time.monotonic()

            try:
                found = list(v.validate(ctx, self.reader, profile) or [])
            except CancelledError:
                raise
            except PartialValidationError as e:
                logger.error("Validator failed after partial results: validator=%s error=%s", v.name, e)
                all_findings.extend(e.findings)
                all_findings.append(error_finding(v, e))
                runs.append(ValidatorRun(v.name, v.category, len(e.findings) + 1, time.monotonic() - started, str(e)))
                continue
            except Exception as e:
                logger.exception("Validator failed: validator=%s", v.name)
                all_findings.append(error_finding(v, e))
                runs.append(ValidatorRun(v.name, v.category, 1, time.monotonic() - started, str(e)))
                continue

            all_findings.extend(found)
            runs.append(ValidatorRun(v.name, v.category, len(found), time.monotonic() - started))
            logger.info("Validator completed: validator=%s findings=%s", v.name, len(found))

        return all_findings, runs
