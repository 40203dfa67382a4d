"""
Rudder faults (errors and warnings) and rendering.

Scope
- FaultCode: canonical, stable numeric identifiers for all user-facing issues.
  Codes are grouped by domain so logs and searches stay predictable.
- CommandException / CommandWarning: base types that carry message + options,
  know their snake-case kind tag, and render themselves with rich.
- trigger(): central entry point to surface any fault (respecting shell/fancy/colorful).
- getdoc(): optional description lookup for a code from the host application.

Taxonomy
- declaration time (always raised synchronously while building commands)
  • DuplicateFlagError, ReservedFlagError
- parse time (returned as a ParseError or raised in throwing mode)
  • UnknownFlagError, UnexpectedArgumentError, MissingFlagValueError,
    MissingMandatoryFlagError, EnumViolationError, TypeCoercionError,
    MissingDirectiveValueError
- environment merge
  • EnvFileMissingPathError, EnvFileNotFoundError, EnvFileFormatError
- execution
  • NoHandlerError, HandlerError (tagged "handler_error")
- warnings
  • EnvValueWarning

UX goals
- Position-first messages where a position exists ("at third position").
- Soft but technical language: short titles, one-sentence bodies, a single clear hint.
- Lowercased tone with readable styling (configurable via __styles__ in __main__).
"""
import sys
import warnings
from collections import defaultdict
from enum import IntEnum
from types import MappingProxyType

from rich.console import Console, Group
from rich.panel import Panel
from rich.text import Text

from .utils import Unset, replace

console = Console(stderr=True)

# Option keys that only drive rendering; everything else is fault context.
_RENDERING = frozenset({"code", "title", "hint", "docs", "tool", "shell", "fancy", "colorful", "ratio"})


class FaultCode(IntEnum):
    """
    canonical fault codes used across rudder (stable identifiers).

    grouping (by high-level domain)
    - declaration (101xx)
      • DUPLICATE_FLAG, RESERVED_FLAG
    - parsing (111xx)
      • UNKNOWN_FLAG, UNEXPECTED_ARGUMENT, MISSING_FLAG_VALUE,
        MISSING_MANDATORY_FLAG, ENUM_VIOLATION, TYPE_COERCION,
        MISSING_DIRECTIVE_VALUE
    - warnings (121xx)
      • ENV_VALUE
    - execution (131xx)
      • NO_HANDLER, HANDLER_ERROR
    - environment files (141xx)
      • ENV_FILE_NOT_FOUND, ENV_FILE_MISSING_PATH, ENV_FILE_FORMAT

    spacing leaves room for future additions without reshuffling existing codes.
    """
    # --- declaration errors (10xxx) ---
    DUPLICATE_FLAG              = 10101
    RESERVED_FLAG               = 10102

    # --- parse errors (11xxx) ---
    UNKNOWN_FLAG                = 11101
    UNEXPECTED_ARGUMENT         = 11102
    MISSING_FLAG_VALUE          = 11103
    MISSING_MANDATORY_FLAG      = 11111
    ENUM_VIOLATION              = 11121
    TYPE_COERCION               = 11122
    MISSING_DIRECTIVE_VALUE     = 11131

    # --- warnings (12xxx) ---
    ENV_VALUE                   = 12101

    # --- execution errors (13xxx) ---
    NO_HANDLER                  = 13101
    HANDLER_ERROR               = 13102

    # --- environment file errors (14xxx) ---
    ENV_FILE_NOT_FOUND          = 14101
    ENV_FILE_MISSING_PATH       = 14102
    ENV_FILE_FORMAT             = 14103

    def normalize(self):
        """
        return a host-normalized string for this code.

        the host application can provide a __codes__ mapping in __main__
        to override numeric ids with friendlier labels.
        """
        return str(getattr(__import__("__main__"), "__codes__", {}).get(self, self.value))


def _render(self, palette):
    """
    build the rich renderable shared by exceptions and warnings.

    palette keys: prog-name, code, title, message, hint-arrow, hint.
    """
    main = __import__("__main__")
    styles = defaultdict(str, palette | getattr(main, "__styles__", {}))
    colorful = self.options.get("colorful", True)
    fancy = self.options.get("fancy", False)

    def text(fragment, style=""):
        if not fragment:
            return Text("")
        if isinstance(fragment, Text):
            return fragment
        return Text(str(fragment), styles[style] if colorful else "")

    tool = self.options.get("tool")
    prog = getattr(main, "__prog__", getattr(getattr(tool, "root", None), "name", None) or "rudder")

    header = Text.assemble(
        "[ ",
        text(prog, "prog-name"),
        " - ",
        text(self.code.normalize(), "code"),
        " | ",
        text(self.title.title(), "title"),
        " ]"
    )
    message = text(self.message, "message")
    hint = Text.assemble(text(" → ", "hint-arrow"), text(self.options.get("hint"), "hint"))

    if fancy:
        try:
            width = int((console.width - 4) * self.options["ratio"])
        except KeyError:
            width = None
        return Panel(Group(message, hint), title=header, title_align="left", width=width)

    return Group(header, message, hint)


class CommandException(Exception):
    """
    base class of every rudder error.

    subclasses declare three class attributes
    - __kind__: snake-case tag used in ParseError.kind and tool envelopes.
    - __code__: the FaultCode of the error.
    - __title__: default short title (overridable through the 'title' option).
    """
    __kind__ = "command_error"
    __code__ = Unset
    __title__ = "command error"

    def __init__(self, message=Unset, /, **options):
        assert isinstance(message, str | Unset)
        super().__init__(message or "")
        self.message = message or ""
        self.options = MappingProxyType(options)

    @property
    def kind(self):
        return type(self).__kind__

    @property
    def code(self):
        return self.options.get("code", type(self).__code__)

    @property
    def title(self):
        return self.options.get("title", type(self).__title__)

    @property
    def details(self):
        """
        structured context of the fault (everything but rendering options).
        """
        return {name: value for name, value in self.options.items() if name not in _RENDERING}

    def __rich__(self):
        return _render(self, {
            "prog-name": "bold #E6E6F0",  # near-white program name
            "code": "bold #00E5FF",  # neon cyan fault code
            "title": "bold #FF4DA6",  # friendly pinky title
            "message": "#C8C8D0",  # soft light gray message
            "hint-arrow": "#9CE19C dim",
            "hint": "italic #9CE19C",
        })

    def __trigger__(self) -> None:
        if not self.options.get("shell", False):
            raise self from self.__cause__
        console.print(self)
        sys.exit(1)

    def __replace__(self, *unused, **overrides):
        assert not unused, "unused arguments are not allowed"
        fault = type(self)(self.message, **{**self.options, **overrides})
        fault.__cause__ = self.__cause__
        return fault


class DuplicateFlagError(CommandException, ValueError):
    __kind__ = "duplicate_flag"
    __code__ = FaultCode.DUPLICATE_FLAG
    __title__ = "duplicate flag"


class ReservedFlagError(DuplicateFlagError):
    __kind__ = "reserved_flag"
    __code__ = FaultCode.RESERVED_FLAG
    __title__ = "reserved flag"


class UnknownFlagError(CommandException):
    __kind__ = "unknown_flag"
    __code__ = FaultCode.UNKNOWN_FLAG
    __title__ = "unknown flag"


class UnexpectedArgumentError(CommandException):
    __kind__ = "unexpected_argument"
    __code__ = FaultCode.UNEXPECTED_ARGUMENT
    __title__ = "unexpected argument"


class MissingFlagValueError(CommandException):
    __kind__ = "missing_value"
    __code__ = FaultCode.MISSING_FLAG_VALUE
    __title__ = "missing flag value"


class MissingMandatoryFlagError(CommandException):
    __kind__ = "missing_mandatory_flag"
    __code__ = FaultCode.MISSING_MANDATORY_FLAG
    __title__ = "missing mandatory flag"


class EnumViolationError(CommandException):
    __kind__ = "enum_violation"
    __code__ = FaultCode.ENUM_VIOLATION
    __title__ = "invalid choice"


class TypeCoercionError(CommandException):
    __kind__ = "type_coercion"
    __code__ = FaultCode.TYPE_COERCION
    __title__ = "invalid value"


class MissingDirectiveValueError(CommandException):
    __kind__ = "missing_directive_value"
    __code__ = FaultCode.MISSING_DIRECTIVE_VALUE
    __title__ = "missing directive value"


class EnvFileMissingPathError(MissingDirectiveValueError):
    __kind__ = "env_file_missing_path"
    __code__ = FaultCode.ENV_FILE_MISSING_PATH
    __title__ = "missing environment file path"


class EnvFileNotFoundError(CommandException):
    __kind__ = "env_file_not_found"
    __code__ = FaultCode.ENV_FILE_NOT_FOUND
    __title__ = "environment file not found"


class EnvFileFormatError(CommandException):
    __kind__ = "env_file_format"
    __code__ = FaultCode.ENV_FILE_FORMAT
    __title__ = "malformed environment file"


class NoHandlerError(CommandException):
    __kind__ = "no_handler"
    __code__ = FaultCode.NO_HANDLER
    __title__ = "nothing to run"


class HandlerError(CommandException):
    __kind__ = "handler_error"
    __code__ = FaultCode.HANDLER_ERROR
    __title__ = "handler failed"


class CommandWarning(Warning):
    """
    base class of every rudder warning; mirrors CommandException's options.
    """
    __kind__ = "command_warning"
    __code__ = Unset
    __title__ = "command warning"

    def __init__(self, message=Unset, /, **options):
        assert isinstance(message, str | Unset)
        super().__init__(message or "")
        self.message = message or ""
        self.options = MappingProxyType(options)

    kind = CommandException.kind
    code = CommandException.code
    title = CommandException.title
    details = CommandException.details

    def __rich__(self):
        return _render(self, {
            "prog-name": "bold #E6E6F0",
            "code": "bold #FFB400",  # amber fault code for warnings
            "title": "bold #FFC2E0",
            "message": "#D6D6DE",
            "hint-arrow": "#B8EFAF dim",
            "hint": "italic #B8EFAF",
        })

    def __trigger__(self) -> None:
        if not self.options.get("shell", False):
            return warnings.warn(self, stacklevel=3)
        console.print(self)

    def __replace__(self, *unused, **overrides):
        assert not unused, "positional arguments are not allowed"
        return type(self)(self.message, **{**self.options, **overrides})


class EnvValueWarning(CommandWarning):
    __kind__ = "env_value"
    __code__ = FaultCode.ENV_VALUE
    __title__ = "ignored environment value"


def trigger(fault, /, **options):
    """
    surface a fault with the given runtime options.

    contract
    - fault must provide __trigger__ and __replace__ methods (see base classes).
    - options are merged into the fault via __replace__(**options) before triggering.
    - in shell mode, rendering happens via the rich stderr console; otherwise
      exceptions are raised and warnings go through the warnings module.
    """
    if (
        not hasattr(fault, "__trigger__") or
        not callable(fault.__trigger__) or
        not hasattr(fault, "__replace__") or
        not callable(fault.__replace__)
    ):
        raise TypeError("trigger() argument must have a __trigger__ and __replace__ methods")
    replace(fault, **options).__trigger__()


def getdoc(code, /):
    """
    optional documentation fetch for a fault code.

    the host application may expose a __docs__ mapping in __main__ keyed by
    FaultCode. when not found, returns None.
    """
    if not isinstance(code, FaultCode):
        raise TypeError("getdoc() argument must be a fault-code")
    return getattr(__import__("__main__"), "__docs__", {}).get(code)


__all__ = (
    "FaultCode",
    "CommandException",
    "DuplicateFlagError",
    "ReservedFlagError",
    "UnknownFlagError",
    "UnexpectedArgumentError",
    "MissingFlagValueError",
    "MissingMandatoryFlagError",
    "EnumViolationError",
    "TypeCoercionError",
    "MissingDirectiveValueError",
    "EnvFileMissingPathError",
    "EnvFileNotFoundError",
    "EnvFileFormatError",
    "NoHandlerError",
    "HandlerError",
    "CommandWarning",
    "EnvValueWarning",
    "trigger",
    "getdoc",
)
