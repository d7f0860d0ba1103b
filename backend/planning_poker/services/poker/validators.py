import re
from typing import Any, List, Optional

from .reconcile import GameMode

NAME_MAX_LENGTH = 20
SESSION_CODE_LENGTH = 6
_SESSION_CODE_RE = re.compile(r'^[A-Z0-9]{%d}$' % SESSION_CODE_LENGTH)


def validate_display_name(name: Any) -> Optional[str]:
    """Return an error message, or None when the name is acceptable."""
    if not isinstance(name, str):
        return 'Display name must be a non-empty string'
    trimmed = name.strip()
    if not trimmed:
        return 'Display name cannot be empty'
    if len(trimmed) > NAME_MAX_LENGTH:
        return f'Display name must be {NAME_MAX_LENGTH} characters or less'
    return None


def parse_mode(mode: Any) -> Optional[GameMode]:
    try:
        return GameMode(mode)
    except ValueError:
        return None


def is_valid_session_code(code: Any) -> bool:
    return isinstance(code, str) and bool(_SESSION_CODE_RE.match(code))


def validate_feature(feature: Any) -> List[str]:
    errors = []
    if not isinstance(feature, dict):
        return ['Feature must be an object']
    fid = feature.get('id')
    if not isinstance(fid, str) or not fid.strip():
        errors.append('Feature must have a valid id')
    name = feature.get('name')
    if not isinstance(name, str) or not name.strip():
        errors.append('Feature must have a valid name')
    return errors


def validate_backlog(features: Any) -> List[str]:
    """Validate a list of raw feature dicts; an empty list of errors means valid."""
    if not isinstance(features, list):
        return ['Backlog must contain a features array']
    if not features:
        return ['Backlog must contain at least one feature']
    errors = []
    seen_ids = set()
    for index, feature in enumerate(features):
        problems = validate_feature(feature)
        if not problems and feature['id'] in seen_ids:
            problems = [f"Duplicate feature id {feature['id']!r}"]
        if problems:
            errors.append(f"Feature at index {index}: {', '.join(problems)}")
        elif isinstance(feature, dict):
            seen_ids.add(feature['id'])
    return errors
