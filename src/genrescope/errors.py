"""Exception types raised to callers of the analysis core."""


class GenrescopeError(Exception):
    """Base class for errors surfaced by genrescope."""


class SettingsError(GenrescopeError, ValueError):
    """A settings patch names an unknown field or an out-of-range value."""


class PresetFormatError(GenrescopeError, ValueError):
    """A compact or verbose preset code is malformed.

    The message is meant to be shown to the user as-is.
    """
