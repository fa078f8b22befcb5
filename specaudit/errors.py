"""Error taxonomy for analysis runs."""

from typing import Sequence


class SpecAuditError(Exception):
    """Base class for errors surfaced to the caller."""


class IngestionError(SpecAuditError):
    """The input directory or one of its recognized files cannot be read."""


class ConfigError(SpecAuditError):
    """A configuration file cannot be read or is not valid TOML."""


class PassConfigurationError(SpecAuditError):
    """The requested pass set cannot be assembled."""


class LLMResponseError(SpecAuditError):
    """An LLM-backed pass returned output that does not match its schema."""


class RemediationCycleError(SpecAuditError):
    """Remediation edits depend on each other cyclically."""

    def __init__(self, edit_ids: Sequence[str]):
        self.edit_ids = tuple(edit_ids)
        super().__init__("cyclic remediation dependencies between edits: " + ", ".join(self.edit_ids))
