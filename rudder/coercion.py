"""
Rudder type coercion: raw string tokens to typed flag values.

Behavior per kind
- string: identity.
- number: float literal; "nan" and non-numeric tokens fail.
- boolean: flag-only flags never reach the coercer (presence is True);
  valued booleans accept true/yes/1/on and false/no/0/off, case-insensitive.
- custom: the flag's converter is called with the raw token; an awaitable
  result is awaited. Whatever it raises is wrapped in TypeCoercionError,
  keeping the original message and exception (as __cause__).

Multiple occurrences
- coerce() converts each occurrence independently, strictly left-to-right, and
  always returns a list for repeatable flags. The first failure wins.

Enum checks
- run on each successfully coerced value only (never on defaults); a value
  outside the flag's choices raises EnumViolationError.
"""
import logging
import math

from .faults import TypeCoercionError, EnumViolationError, FaultCode, getdoc
from .flags import Kind
from .utils import resolve, ordinal

logger = logging.getLogger(__name__)

_TRUTHY = frozenset({"true", "yes", "1", "on"})
_FALSY = frozenset({"false", "no", "0", "off"})


def parse_number(token, /):
    """
    Parse a floating-point literal; raise ValueError when it is not a number.
    """
    value = float(token)
    if math.isnan(value):
        raise ValueError("could not convert string to float: %r" % token)
    return value


def parse_boolean(token, /):
    """
    Parse a boolean literal; raise ValueError for anything unrecognized.
    """
    if isinstance(token, bool):
        return token
    if (lowered := str(token).strip().lower()) in _TRUTHY:
        return True
    if lowered in _FALSY:
        return False
    raise ValueError("could not convert string to boolean: %r" % token)


def check_choices(flag, value, /, *, index=None):
    """
    Raise EnumViolationError when value is not among flag.choices.
    """
    if not flag.choices or value in flag.choices:
        return value
    where = " at %s position" % ordinal(index) if index else ""
    raise EnumViolationError(
        "invalid value %r for flag %r%s (choose from %s)" % (
            value, flag.canonical, where, ", ".join(map(repr, flag.choices))
        ),
        flag=flag.name,
        value=value,
        allowed=list(flag.choices),
        index=index,
        hint="use one of: %s" % ", ".join(map(str, flag.choices)),
        docs=getdoc(FaultCode.ENUM_VIOLATION),
    )


async def coerce_value(flag, token, /, *, index=None):
    """
    Convert one raw token for flag and enum-check the result.
    """
    where = " at %s position" % ordinal(index) if index else ""

    try:
        match flag.kind:
            case Kind.STRING:
                value = token
            case Kind.NUMBER:
                value = parse_number(token)
            case Kind.BOOLEAN:
                value = parse_boolean(token)
            case Kind.CUSTOM:
                value = await resolve(flag.convert(token))
    except Exception as exception:
        if flag.kind is Kind.CUSTOM:
            # custom converters keep their own wording
            message = str(exception) or "invalid value %r for flag %r%s" % (token, flag.canonical, where)
        else:
            message = "invalid %s %r for flag %r%s" % (flag.kind, token, flag.canonical, where)
        fault = TypeCoercionError(
            message,
            flag=flag.name,
            value=token,
            expected=str(flag.kind),
            index=index,
            exception=exception,
            hint="pass a value that %s accepts" % flag.canonical,
            docs=getdoc(FaultCode.TYPE_COERCION),
        )
        raise fault from exception

    logger.debug("coerced %r for %s into %r", token, flag.canonical, value)
    return check_choices(flag, value, index=index)


async def coerce(records, /):
    """
    Coerce the flag occurrences of one command level.

    parameters
    - records: iterable of (flag, token, index) in input order; token is None
      for flag-only presence.

    returns
    - {flag name: value}: a list for repeatable flags (one item per occurrence,
      in order), otherwise the last occurrence's value.

    occurrences are converted strictly in input order, so the first bad token
    is the one reported.
    """
    values = {}
    flags = {}
    for flag, token, index in records:
        flags[flag.name] = flag
        if flag.flag_only:
            value = True
        else:
            value = await coerce_value(flag, token, index=index)
        values.setdefault(flag.name, []).append(value)

    return {
        name: items if flags[name].multiple else items[-1]
        for name, items in values.items()
    }


__all__ = (
    "parse_number",
    "parse_boolean",
    "check_choices",
    "coerce_value",
    "coerce",
)
