"""
Rudder system directives (engine-reserved controls).

Scope
- A closed vocabulary of directive tokens living in the reserved "--s-"
  namespace. They are recognized at any position of the token stream,
  independently of any command's flags, and removed before flag parsing.
- SystemArgs: the flat record of directives found in one invocation.

Directives
- --s-debug            early exit reporting the runtime context; enables debug logging.
- --s-debug-print      early exit rendering the command tree.
- --s-enable-fuzzy     dry-run: no mandatory checks, no handler execution.
- --s-with-env PATH    merge key/value pairs from PATH into the default layer.
- --s-mcp-version VER  rebind the process-wide capability version.

Notes
- Value-taking directives accept "--s-with-env=PATH" as well as the spaced form.
  A spaced value is missing when no token follows or the next token starts with "-".
- Scanning stops at a literal "--"; everything after it is left untouched.
- User flags can never be spelled inside the reserved namespace (see is_reserved).
"""
import logging
from collections import namedtuple
from enum import StrEnum

from .faults import EnvFileMissingPathError, MissingDirectiveValueError, FaultCode, getdoc

logger = logging.getLogger(__name__)

RESERVED_PREFIX = "--s-"


class Directive(StrEnum):
    DEBUG = "--s-debug"
    DEBUG_PRINT = "--s-debug-print"
    FUZZY = "--s-enable-fuzzy"
    WITH_ENV = "--s-with-env"
    MCP_VERSION = "--s-mcp-version"

    @property
    def field(self):
        """
        the SystemArgs field this directive fills.
        """
        return {
            Directive.DEBUG: "debug",
            Directive.DEBUG_PRINT: "debug_print",
            Directive.FUZZY: "fuzzy",
            Directive.WITH_ENV: "with_env",
            Directive.MCP_VERSION: "mcp_version",
        }[self]

    @property
    def valued(self):
        return self in (Directive.WITH_ENV, Directive.MCP_VERSION)


SystemArgs = namedtuple("SystemArgs", (
    "debug",
    "debug_print",
    "fuzzy",
    "with_env",
    "mcp_version",
), defaults=(False, False, False, None, None))
SystemArgs.__doc__ = """
Directives found in one invocation.

Boolean fields are True when their directive appeared; with_env and
mcp_version hold the directive's value or None.
"""


def is_reserved(token, /):
    """
    True when token lies in the reserved directive namespace.
    """
    return isinstance(token, str) and token.startswith(RESERVED_PREFIX)


def scan(tokens, /):
    """
    split directive tokens out of tokens.

    returns
    - (remaining, system): remaining is a list of the non-directive tokens in
      their original order; system is a SystemArgs when at least one directive
      appeared, otherwise None.

    raises
    - EnvFileMissingPathError: --s-with-env without a path.
    - MissingDirectiveValueError: --s-mcp-version without a value.

    unknown tokens in the reserved namespace are not directives; they stay in
    the stream and the parse engine reports them as unknown flags.
    """
    remaining = []
    found = {}
    tokens = list(tokens)
    index = 0

    while index < len(tokens):
        token = tokens[index]
        index += 1

        if token == "--":
            remaining.extend(tokens[index - 1:])
            break

        name, separator, inline = token.partition("=")
        try:
            directive = Directive(name)
        except ValueError:
            remaining.append(token)
            continue

        if not directive.valued:
            if separator:
                remaining.append(token)
                continue
            found[directive.field] = True
            continue

        if separator:
            value = inline
        elif index < len(tokens) and not tokens[index].startswith("-"):
            value = tokens[index]
            index += 1
        else:
            value = ""

        if not value.strip():
            if directive is Directive.WITH_ENV:
                raise EnvFileMissingPathError(
                    "--s-with-env requires a file path argument",
                    directive=str(directive),
                    hint="pass a path right after it (for example: --s-with-env config.yaml)",
                    docs=getdoc(FaultCode.ENV_FILE_MISSING_PATH),
                )
            raise MissingDirectiveValueError(
                "%s requires a value argument" % directive,
                directive=str(directive),
                hint="pass a value right after it (for example: %s 2025-06-18)" % directive,
                docs=getdoc(FaultCode.MISSING_DIRECTIVE_VALUE),
            )
        found[directive.field] = value.strip()

    if not found:
        return remaining, None

    logger.debug("system directives: %s", found)
    return remaining, SystemArgs(**found)


__all__ = (
    "RESERVED_PREFIX",
    "Directive",
    "SystemArgs",
    "is_reserved",
    "scan",
)
