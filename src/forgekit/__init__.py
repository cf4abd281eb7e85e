"""ForgeScript template parser, analyser and validator."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from forgekit.catalogue import Catalogue
    from forgekit.validator import Report, ValidationRules

__version__ = "0.1.0"


def version_info() -> dict[str, str]:
    """Static identifying metadata about this build."""
    return {"name": "forgekit", "version": __version__}


def check(
    source: str,
    catalogue: Catalogue | None = None,
    rules: ValidationRules | None = None,
) -> Report:
    """Parse and validate source text.

    Without explicit rules, every rule runs when a catalogue is given and
    only the syntax rules otherwise.
    """
    from forgekit.validator import ValidationRules, validate_code

    if rules is None:
        rules = ValidationRules.strict() if catalogue is not None else ValidationRules.syntax_only()
    return validate_code(source, catalogue, rules)
