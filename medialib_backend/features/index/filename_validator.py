"""Validation for names of files and directories created or renamed in the library."""

_WINDOWS_RESERVED = {
    'CON', 'PRN', 'AUX', 'NUL',
    'COM1', 'COM2', 'COM3', 'COM4', 'COM5', 'COM6', 'COM7', 'COM8', 'COM9',
    'LPT1', 'LPT2', 'LPT3', 'LPT4', 'LPT5', 'LPT6', 'LPT7', 'LPT8', 'LPT9'
}
_FORBIDDEN_CHARS = set('<>:"|?*')
MAX_NAME_LENGTH = 255


def name_separator_error(name: str) -> str:
    if "/" in name or "\\" in name:
        return "Name cannot contain path separators"
    return ""


def name_char_error(name: str) -> str:
    if "\x00" in name:
        return "Name cannot contain null bytes"
    if any(ord(char) < 32 for char in name):
        return "Name cannot contain control characters"
    if any(char in _FORBIDDEN_CHARS for char in name):
        return "Name contains a character not allowed in file names"
    return ""


def name_boundary_error(name: str) -> str:
    if name in (".", ".."):
        return "Name cannot be a relative path component"
    if name.startswith('.'):
        return "Name cannot start with a dot (hidden entries are not indexed)"
    if name.startswith(' ') or name.endswith(' ') or name.endswith('.'):
        return "Name cannot start or end with a space, or end with a dot"
    return ""


def name_reserved_error(name: str) -> str:
    base = name.split('.')[0].upper()
    if base in _WINDOWS_RESERVED:
        return "Name uses a reserved Windows name"
    return ""


def validate_filename(name: str) -> tuple[bool, str]:
    if not name:
        return False, "Name cannot be empty"
    if len(name) > MAX_NAME_LENGTH:
        return False, f"Name longer than {MAX_NAME_LENGTH} characters"
    for check in (name_separator_error, name_char_error, name_boundary_error, name_reserved_error):
        error = check(name)
        if error:
            return False, error
    return True, ""
