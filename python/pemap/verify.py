"""
Verification report types.

A VerificationResult is an ordered list of Findings. Each finding names the
structure it concerns (``section[2] .rsrc``, ``directory[1] IMPORT``,
``entry point``) so that reports merged from several checks still point at
the offending slot.
"""

from dataclasses import dataclass, field

ERROR = "error"
WARNING = "warning"


@dataclass(frozen=True)
class Finding:
    """One problem found in an image."""

    severity: str  # ERROR or WARNING
    where: str
    message: str

    def __str__(self) -> str:
        return f"{self.where}: {self.message}"


@dataclass
class VerificationResult:
    """Findings from one or more checks.

    Any ERROR finding fails the result; warnings are informational.
    """

    findings: list[Finding] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return not any(f.severity == ERROR for f in self.findings)

    @property
    def errors(self) -> list[str]:
        return [str(f) for f in self.findings if f.severity == ERROR]

    @property
    def warnings(self) -> list[str]:
        return [str(f) for f in self.findings if f.severity == WARNING]

    def error(self, where: str, message: str) -> None:
        self.findings.append(Finding(ERROR, where, message))

    def warning(self, where: str, message: str) -> None:
        self.findings.append(Finding(WARNING, where, message))

    def merge(self, other: "VerificationResult") -> None:
        self.findings.extend(other.findings)

    def about(self, where: str) -> list[Finding]:
        """Findings whose location starts with where (e.g. "section[1]")."""
        return [f for f in self.findings if f.where.startswith(where)]

    def __str__(self) -> str:
        status = "PASSED" if self.passed else "FAILED"
        lines = [
            f"Verification {status}: {len(self.errors)} error(s), "
            f"{len(self.warnings)} warning(s)"
        ]
        lines.extend(f"  [{f.severity}] {f}" for f in self.findings)
        return "\n".join(lines)
