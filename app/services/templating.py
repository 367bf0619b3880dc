"""`{{key}}` placeholder substitution for prompt templates."""

import re
from typing import List, Mapping, NamedTuple

PLACEHOLDER_PATTERN = re.compile(r"\{\{([a-zA-Z_][a-zA-Z0-9_]*)\}\}")


class SubstitutionResult(NamedTuple):
    result: str
    unresolved: List[str]


def substitute_variables(template: str, variables: Mapping[str, str]) -> SubstitutionResult:
    """
    Replace `{{key}}` placeholders with values from `variables`.

    Placeholders whose key is not in the mapping are left as-is and reported
    in `unresolved`, in order of first appearance.

    Args:
        template: Prompt text containing placeholders
        variables: Resolved variable map

    Returns:
        SubstitutionResult with the rendered text and unresolved keys
    """
    unresolved: List[str] = []

    def _replace(match: re.Match) -> str:
        key = match.group(1)
        if key in variables:
            return str(variables[key])
        if key not in unresolved:
            unresolved.append(key)
        return match.group(0)

    result = PLACEHOLDER_PATTERN.sub(_replace, template)
    return SubstitutionResult(result=result, unresolved=unresolved)
