"""
Rudder utilities (internal helpers, carefully exposed)

Scope
- Small building blocks shared by the flag model, the parse engine and the
  schema bridge. Stable enough for consumers, designed primarily to support
  the higher-level layers.

Overview
- UnsetType / Unset
  • Singleton sentinel for "value not provided", distinct from None.
  • Falsey (bool(Unset) is False), printable as "Unset", and non-subclassable.

- coalesce(value, default=None)
  • Replace Unset with a concrete default, preserving falsey values like None/0/"".

- rename(callable, name) / @rename("name")
  • Assign stable __name__/__qualname__ to generated wrappers.

- mirror("attr")
  • Read-only property exposing self._attr through fresh container copies.

- replace(object, **changes)
  • Produce a modified copy through the object's __replace__ protocol.

- pluralize(text) / ordinal(number)
  • Wording helpers for group labels and position-first messages.

- resolve(value)
  • Await a value when it is awaitable, return it unchanged otherwise.

- configure_logging(level)
  • Route the package logger to a rich handler on stderr.

- debugging(level)
  • configure_logging() for the duration of a with-block; the previous level and
    handlers are restored on exit.

Usage guidance
- Prefer Unset for API defaults when None is a meaningful user value; materialize with coalesce().
- Use mirror() to expose internal state safely as read-only properties.

Quick examples
    >>> coalesce(Unset, "fallback")
    'fallback'
    >>> coalesce(None, "fallback") is None
    True
    >>> ordinal(3)
    'third'
"""
import builtins
import contextlib
import functools
import inspect
import logging
import re
from collections.abc import Sequence, Mapping, Set
from typing import final

from rich.console import Console
from rich.logging import RichHandler


@final
class UnsetType:
    """
    Internal sentinel type representing a value that was not provided.

    Characteristics
    - Boolean-false: bool(Unset) is False, but it is distinct from None and 0.
    - Printable: repr(Unset) -> "Unset" for friendly diagnostics.
    - Non-subclassable and a singleton per process.
    """

    def __or__(self, other, /):
        """
        Support PEP 604 unions in isinstance checks (e.g., str | Unset).
        """
        try:
            return other | type(self)
        except TypeError:
            return NotImplemented

    def __ror__(self, other, /):
        try:
            return other | type(self)
        except TypeError:
            return NotImplemented

    @functools.cache
    def __new__(cls):
        return super().__new__(cls)

    def __bool__(self):
        return False

    def __repr__(self):
        return "Unset"

    def __copy__(self):
        return self

    def __deepcopy__(self, memo, /):
        return self

    def __init_subclass__(cls, **options):
        raise TypeError("type 'UnsetType' is not an acceptable base type")


def coalesce(object, default=None, /):
    """
    Resolve the Unset sentinel to a concrete default.

    Falsey values like None, 0, "" or [] are preserved as-is; only Unset is
    replaced.

    Examples
    - coalesce("name", "fallback") -> "name"
    - coalesce(Unset, "fallback")  -> "fallback"
    - coalesce(None, "fallback")   -> None
    """
    return object if object is not Unset else default


def rename(*parameters):
    """
    Set a stable __name__/__qualname__ on a callable, or return a decorator
    that will do so later.

    Forms
    - rename(callable, name) -> callable
    - rename(name) -> decorator

    Some built-in callables are not updatable and raise TypeError.
    """
    match len(parameters):
        case 2:
            callable, name = parameters
            if not builtins.callable(callable):
                raise TypeError("rename() first argument must be callable")
            if not isinstance(name, str):
                raise TypeError("rename() second argument must be a string")
            try:
                callable.__qualname__ = name
                callable.__name__ = name
            except (AttributeError, TypeError):
                raise TypeError("rename() first argument must be a updatable callable") from None
            return callable
        case 1:
            name, = parameters
            if not isinstance(name, str):
                raise TypeError("@rename() argument must be a string")

            def wrapper(callable):
                if not builtins.callable(callable):
                    raise TypeError("@rename() must be applied to a callable")
                return rename(callable, name)

            return rename(wrapper, "rename")
        case _:
            raise TypeError("rename takes 1 to 2 arguments but %d were given" % len(parameters))


def _immortalize(object):
    """
    Recursively copy container values so callers cannot mutate backing state.

    - Sequence (non-string): new list.
    - Mapping: new dict with the same keys.
    - Set: new set.
    - Anything else: returned as-is.
    """
    if isinstance(object, Sequence) and not isinstance(object, str):
        return list(map(_immortalize, object))
    elif isinstance(object, Mapping):
        return dict(zip(object.keys(), map(_immortalize, object.values())))
    elif isinstance(object, Set):
        return set(map(_immortalize, object))
    else:
        return object


def mirror(name, /):
    """
    Define a read-only property that mirrors the private attribute "_{name}".

    Container values are returned as fresh copies (see _immortalize).
    """
    if not isinstance(name, str):
        raise TypeError("mirror() argument must be a string")

    @rename(name)
    def getter(self):
        return _immortalize(getattr(self, "_" + name))

    return property(getter)


def replace(object, /, **changes):
    """
    Return a modified copy of object through its __replace__ method.

    This is the same protocol copy.replace() uses; it is called directly so
    interpreters without copy.replace() behave identically.
    """
    try:
        method = type(object).__replace__
    except AttributeError:
        raise TypeError(f"replace() does not support {type(object).__name__!r} objects") from None
    return method(object, **changes)


@functools.cache
def pluralize(text, /):
    """
    Best-effort English pluralizer for group labels.

    Only the last word of a phrase is pluralized; casing of that word is kept.

    Examples
    - pluralize("flag")           -> "flags"
    - pluralize("entry")          -> "entries"
    - pluralize("command option") -> "command options"
    """
    if not isinstance(text, str):
        raise TypeError("pluralize() argument must be a string")

    if not (match := re.search(r'(\S+)(\s*)$', text)):
        return text

    head, last, trail = text[:match.start(1)], match.group(1), match.group(2)
    lower = last.lower()

    if lower in {"series", "species", "information", "metadata", "news"}:
        plural = lower
    elif lower.endswith(("s", "sh", "ch", "x", "z")):
        plural = lower + "es"
    elif lower.endswith("y") and len(lower) > 1 and lower[-2] not in "aeiou":
        plural = lower[:-1] + "ies"
    else:
        plural = lower + "s"

    if last.isupper():
        plural = plural.upper()
    elif last[:1].isupper():
        plural = plural[:1].upper() + plural[1:]

    return head + plural + trail


@functools.cache
def ordinal(number, /):
    """
    Return a human-friendly ordinal label for a 1-based position.

    - 1..10 are rendered as words ("first"…"tenth").
    - Other numbers use numeric ordinals with correct English suffixes.
    """
    try:
        return {
            1: "first",
            2: "second",
            3: "third",
            4: "fourth",
            5: "fifth",
            6: "sixth",
            7: "seventh",
            8: "eighth",
            9: "ninth",
            10: "tenth",
        }[number]
    except KeyError:
        pass

    # 11th, 12th, 13th (and 111th, 112th, 113th, …)
    if 10 < number % 100 < 20:
        return f"{number}th"

    return f'{number}%s' % {1: "st", 2: "nd", 3: "rd"}.get(number % 10, "th")


async def resolve(value, /):
    """
    Await value when it is awaitable; otherwise return it unchanged.

    Used for user callables (custom coercions, handlers) that may be either
    synchronous or asynchronous.
    """
    if inspect.isawaitable(value):
        return await value
    return value


def configure_logging(level=logging.INFO, /):
    """
    Attach a rich handler (stderr) to the package logger and set its level.

    Repeated calls only adjust the level; a single rich handler is installed.
    """
    logger = logging.getLogger(__package__)
    logger.setLevel(level)
    if not any(isinstance(handler, RichHandler) for handler in logger.handlers):
        logger.addHandler(RichHandler(console=Console(stderr=True), show_path=False))
    return logger


@contextlib.contextmanager
def debugging(level=logging.DEBUG, /):
    """
    Scope configure_logging(level) to a with-block.
    """
    logger = logging.getLogger(__package__)
    previous, handlers = logger.level, list(logger.handlers)
    try:
        yield configure_logging(level)
    finally:
        logger.setLevel(previous)
        for handler in logger.handlers[:]:
            if handler not in handlers:
                logger.removeHandler(handler)


Unset = UnsetType()
"""
Internal sentinel for "not provided".

Use Unset as a default when None is a valid, user-meaningful value but you still
need to distinguish "no input" from "explicitly passed None".
"""


__all__ = (
    # Functions
    "coalesce",
    "rename",
    "mirror",
    "replace",
    "pluralize",
    "ordinal",
    "resolve",
    "configure_logging",
    "debugging",

    # Types
    "UnsetType",

    # Constants
    "Unset",
)
