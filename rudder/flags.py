r"""
Rudder flag specifications.

Overview
- Kind: the closed set of value kinds {string, number, boolean, custom}.
- Flag: a named, typed command-line parameter with one or more spellings.
- @flag(...): build a custom-kind Flag from a conversion function.
- FlagSet / declare(): the ordered, duplicate-free flag set of one command.

Metadata (sanitized on construction)
- tokens: one or more shell-style spellings; the first is canonical.
- name: Unset | identifier. Unset names are resolved when the flag is bound
  to a command (handler parameter name, else derived from the tokens).
- kind: literal tag ("string", "number", "boolean"), one of the constructors
  str/float/int/bool, a Kind member, or any other callable (custom kind; may
  be async). Unknown tags fail here, never at parse time.
- mandatory: bool, or a callable receiving the parsed arguments of its level.
- flag_only: presence means True; requires the boolean kind.
- multiple: repeated occurrences accumulate into a list.
- choices: closed enum set (duplicates rejected unless a Set).
- default: any value, applied only when the flag was not supplied.
- descr / group / hidden: help metadata.

Validation highlights
- Tokens must match r"--?[^\W\d_](-?[^\W_]+)*" and be unique within a flag.
- Tokens in the reserved "--s-" namespace raise ReservedFlagError.
- Within a FlagSet, names and tokens are unique (DuplicateFlagError).

Quick example:
    >>> from rudder.flags import Flag, flag, declare
    >>> verbose = Flag("-v", "--verbose", kind="boolean", flag_only=True)
    >>> @flag("--port", "-p")
    ... def port(token):
    ...     return int(token)
    ...
    >>> flags = declare([verbose, port])
    >>> flags.lookup("-p").name
    'port'
"""
import functools
import operator
import re
from collections.abc import Iterable, Set
from enum import StrEnum
from types import MappingProxyType

from rich.text import Text

from .faults import DuplicateFlagError, ReservedFlagError, FaultCode, getdoc
from .system import is_reserved
from .utils import *


class Kind(StrEnum):
    """
    canonical value kinds; every accepted 'kind' collapses to one of these.
    """
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    CUSTOM = "custom"


# Literal tags and well-known constructors accepted for 'kind'.
_KINDS = {
    "string": Kind.STRING,
    "number": Kind.NUMBER,
    "boolean": Kind.BOOLEAN,
    str: Kind.STRING,
    float: Kind.NUMBER,
    int: Kind.NUMBER,
    bool: Kind.BOOLEAN,
}


class FlagType(type):
    """
    Metaclass that makes flag specs introspectable.

    Responsibilities
    - Expose selected fields as read-only properties using mirror() for all
      names listed in __introspectable__.
    - Provide stable __repr__/__rich_repr__ implementations for diagnostics.

    Conventions
    - __typename__ is derived from the class name (camel-case split with hyphens)
      and used in messages ("flag 'kind' must be ...").
    - __displayable__ (if set) narrows which properties are shown by __rich_repr__.
    """
    __introspectable__ = ()
    __displayable__ = Unset

    def __new__(cls, name, bases, namespace, **options):
        self = super().__new__(
            cls,
            name,
            bases,
            namespace | {
                "__typename__": re.sub(r"(?<!^)(?=[A-Z])", r"-", name).lower(),
            } | {
                name: mirror(name) for name in namespace.get("__introspectable__", ())
            },
        )

        @rename("__repr__")
        def __repr__(self):
            """
            Return a concise, stable representation with key metadata.

            Example
            - flag(tokens=['-v', '--verbose'], name='verbose', kind=<Kind.BOOLEAN: 'boolean'>, ...)
            """
            return f"{type(self).__typename__}({', '.join(map(functools.partial(operator.mod, '%s=%r'), self.__rich_repr__()))})"
        self.__repr__ = __repr__

        @rename("__rich_repr__")
        def __rich_repr__(self):
            for name in coalesce(type(self).__displayable__, type(self).__introspectable__):
                yield name, getattr(self, name)
        self.__rich_repr__ = __rich_repr__

        return self


def _sanitize_metadata(cls, metadata, /):
    """
    Internal: normalize 'group' and 'descr'.

    - group: defaults to the pluralized typename ("flags"); non-empty when given.
    - descr: defaults to None; non-empty when given.

    Mutates metadata in place; raises TypeError/ValueError on bad values.
    """
    if not isinstance(group := metadata["group"], str | Unset):
        raise TypeError(f"{cls.__typename__} 'group' must be a string")
    elif isinstance(group, str) and not (group := group.strip()):
        raise ValueError(f"{cls.__typename__} 'group' cannot be empty")
    metadata["group"] = coalesce(group, pluralize(cls.__typename__.replace("-", " ")))

    if not isinstance(descr := metadata["descr"], str | Text | Unset):
        raise TypeError(f"{cls.__typename__} 'descr' must be a string")
    elif isinstance(descr, str) and not (descr := descr.strip()):
        raise ValueError(f"{cls.__typename__} 'descr' cannot be empty")
    metadata["descr"] = coalesce(descr)


def _sanitize_tokens(cls, metadata, /):
    r"""
    Internal: validate spellings and the optional explicit name.

    - tokens: at least one; each a shell-style option spelling matching
      r"--?[^\W\d_](-?[^\W_]+)*" (unicode letters allowed); order is kept and
      the first token is canonical.
    - tokens in the reserved directive namespace raise ReservedFlagError.
    - a token repeated within the same flag raises DuplicateFlagError.
    - name: Unset or a Python identifier.
    """
    tokens = []
    if not metadata["tokens"]:
        raise TypeError(f"{cls.__typename__} must specify at least one token")

    for token in metadata["tokens"]:
        if not isinstance(token, str):
            raise TypeError(f"{cls.__typename__} tokens must be strings")
        elif not (token := token.strip()):
            raise ValueError(f"{cls.__typename__} tokens cannot be empty-strings")
        elif is_reserved(token):
            raise ReservedFlagError(
                "token %r is reserved for system directives" % token,
                token=token,
                hint="pick a spelling outside the '--s-' namespace",
                docs=getdoc(FaultCode.RESERVED_FLAG),
            )
        elif not re.fullmatch(r"--?[^\W\d_](-?[^\W_]+)*", token):
            raise ValueError(f"{cls.__typename__} tokens must be valid shell-style option names (unicodes are allowed)")
        elif token in tokens:
            raise DuplicateFlagError(
                "token %r is repeated" % token,
                token=token,
                hint="keep a single %r spelling" % token,
                docs=getdoc(FaultCode.DUPLICATE_FLAG),
            )
        tokens.append(token)
    metadata["tokens"] = tuple(tokens)

    if not isinstance(name := metadata["name"], str | Unset):
        raise TypeError(f"{cls.__typename__} 'name' must be a string")
    elif isinstance(name, str) and not name.isidentifier():
        raise ValueError(f"{cls.__typename__} 'name' must be an identifier")


def _sanitize_kind(cls, metadata, /):
    """
    Internal: collapse 'kind' into one Kind member (plus the converter for custom kinds).

    Accepted
    - Kind members, the tags "string"/"number"/"boolean" (case-insensitive),
      and the constructors str, float, int, bool.
    - Any other callable becomes Kind.CUSTOM and is stored as 'convert'.

    Raises
    - ValueError: unknown literal tag (including "custom", which needs a callable).
    - TypeError: anything that is neither a tag nor callable.
    """
    kind = metadata["kind"]
    metadata["convert"] = None

    if isinstance(kind, Kind):
        if kind is Kind.CUSTOM:
            raise ValueError(f"{cls.__typename__} custom 'kind' must be given as a callable")
    elif isinstance(kind, str):
        try:
            kind = _KINDS[kind.strip().lower()]
        except KeyError:
            raise ValueError(f"{cls.__typename__} 'kind' must be one of 'string', 'number', 'boolean' or a callable, not {kind!r}") from None
    elif isinstance(kind, type) and kind in _KINDS:
        kind = _KINDS[kind]
    elif callable(kind):
        metadata["convert"] = kind
        kind = Kind.CUSTOM
    else:
        raise TypeError(f"{cls.__typename__} 'kind' must be a string tag or a callable")

    metadata["kind"] = kind


def _sanitize_semantics(cls, metadata, /):
    """
    Internal: validate mandatory/flag_only/multiple/choices.

    - mandatory: bool or callable (conditional mandatory).
    - flag_only: only for the boolean kind, and not combined with multiple.
    - choices: iterable; duplicates rejected unless a Set; normalized to a tuple
      (Sets keep their own type).
    """
    if not isinstance(mandatory := metadata["mandatory"], bool) and not callable(mandatory):
        raise TypeError(f"{cls.__typename__} 'mandatory' must be a boolean or a callable")

    if metadata["flag_only"]:
        if metadata["kind"] is not Kind.BOOLEAN:
            raise TypeError(f"{cls.__typename__} 'flag_only' requires the boolean kind")
        if metadata["multiple"]:
            raise TypeError(f"{cls.__typename__} cannot be both 'flag_only' and 'multiple'")

    if isinstance(choices := metadata["choices"], str) or not isinstance(choices, Iterable):
        raise TypeError(f"{cls.__typename__} 'choices' must be an iterable of values")
    if not isinstance(choices, Set):
        sanitized = []
        for choice in choices:
            if choice in sanitized:
                raise ValueError(f"{cls.__typename__} 'choices' cannot contain duplicates")
            sanitized.append(choice)
        choices = tuple(sanitized)
    metadata["choices"] = choices


def derive_name(tokens, /):
    """
    Derive a flag name from its spellings: the first long token wins.

    Examples
    - ("-n", "--dry-run") -> "dry_run"
    - ("-v",)             -> "v"
    """
    token = next((token for token in tokens if token.startswith("--")), tokens[0])
    return token.lstrip("-").replace("-", "_")


class Flag(metaclass=FlagType):
    """
    Named, typed command-line parameter.

    Flags are immutable once built; use replace(flag, **changes) to derive a
    modified copy (for example, to bind a name).

    Properties
    - The names listed in __introspectable__ are exposed as read-only attributes.
    - canonical: the first token.
    """

    __introspectable__ = (
        "tokens",
        "name",
        "kind",
        "convert",
        "mandatory",
        "flag_only",
        "multiple",
        "choices",
        "default",
        "descr",
        "group",
        "hidden",
    )

    __displayable__ = (
        "tokens",
        "name",
        "kind",
        "mandatory",
        "flag_only",
        "multiple",
        "choices",
        "default",
    )

    def __new__(
            cls,
            *tokens,
            name=Unset,
            kind="string",
            mandatory=False,
            flag_only=False,
            multiple=False,
            choices=(),
            default=Unset,
            descr=Unset,
            group=Unset,
            hidden=False
    ):
        metadata = {
            "tokens": tokens,
            "name": name,
            "kind": kind,
            "mandatory": mandatory,
            "flag_only": bool(flag_only),
            "multiple": bool(multiple),
            "choices": choices,
            "default": default,
            "descr": descr,
            "group": group,
            "hidden": bool(hidden),
        }
        _sanitize_metadata(cls, metadata)
        _sanitize_tokens(cls, metadata)
        _sanitize_kind(cls, metadata)
        _sanitize_semantics(cls, metadata)

        self = super().__new__(cls)
        # Unset survives on 'name' and 'default' on purpose: both are meaningful as "not given".
        for name, object in metadata.items():
            setattr(self, "_" + name, object)
        return self

    @property
    def canonical(self):
        return self._tokens[0]

    @property
    def valued(self):
        """
        True when the flag consumes a value token.
        """
        return not self._flag_only

    def required(self, args=MappingProxyType({}), /):
        """
        Evaluate 'mandatory' for the given parsed arguments of the flag's level.
        """
        if callable(self._mandatory):
            return bool(self._mandatory(MappingProxyType(dict(args))))
        return self._mandatory

    def __replace__(self, *unused, **overrides):
        assert not unused, "positional arguments are not allowed"
        tokens = overrides.pop("tokens", self._tokens)
        return type(self)(*tokens, **{
            "name": self._name,
            "kind": self._convert if self._kind is Kind.CUSTOM else self._kind,
            "mandatory": self._mandatory,
            "flag_only": self._flag_only,
            "multiple": self._multiple,
            "choices": self._choices,
            "default": self._default,
            "descr": Unset if self._descr is None else self._descr,
            "group": self._group,
            "hidden": self._hidden,
        } | overrides)


def flag(*tokens, **metadata):
    """
    Decorator/factory for a custom-kind flag.

    Usage
        @flag("--port", "-p", descr="listening port")
        def port(token):
            return int(token)

    The decorated function becomes the flag's converter: it receives the raw
    token and returns the typed value (or an awaitable of it) and may raise to
    reject the token. The decorator returns the Flag itself.
    """
    if "kind" in metadata:
        raise TypeError("@flag() takes its kind from the decorated function")

    @rename("flag")
    def wrapper(convert, /):
        if not callable(convert):
            raise TypeError("@flag() must be applied to a callable")
        return Flag(*tokens, kind=convert, **metadata)

    return wrapper


class FlagSet:
    """
    Ordered, duplicate-free set of flags owned by one command.

    Invariants
    - every flag has a name; names are unique.
    - every token maps to exactly one flag.

    Flags without a name get one derived from their tokens when added.
    """

    def __init__(self, flags=(), /):
        self._flags = {}
        self._tokens = {}
        for object in flags:
            self.add(object)

    def add(self, flag, /):
        """
        Add a flag and return it (named). Raises DuplicateFlagError on any clash.
        """
        if not isinstance(flag, Flag):
            raise TypeError("flag-set members must be flags")
        if flag.name is Unset:
            flag = replace(flag, name=derive_name(flag.tokens))

        if flag.name in self._flags:
            raise DuplicateFlagError(
                "flag name %r is already in use" % flag.name,
                name=flag.name,
                hint="rename one of the flags (name=...)",
                docs=getdoc(FaultCode.DUPLICATE_FLAG),
            )
        for token in flag.tokens:
            if token in self._tokens:
                raise DuplicateFlagError(
                    "flag token %r is already in use by %r" % (token, self._tokens[token].name),
                    name=flag.name,
                    token=token,
                    hint="pick another spelling for %r" % flag.name,
                    docs=getdoc(FaultCode.DUPLICATE_FLAG),
                )

        self._flags[flag.name] = flag
        self._tokens.update(dict.fromkeys(flag.tokens, flag))
        return flag

    def remove(self, name, /):
        """
        Remove and return the flag called name (KeyError when absent).
        """
        flag = self._flags.pop(name)
        for token in flag.tokens:
            del self._tokens[token]
        return flag

    def get(self, name, default=None, /):
        return self._flags.get(name, default)

    def lookup(self, token, /):
        """
        Return the flag spelled token, or None.
        """
        return self._tokens.get(token)

    def collisions(self, flags, /):
        """
        Return the names and tokens of flags that would clash with this set.
        """
        clashes = []
        for flag in flags:
            if flag.name in self._flags:
                clashes.append(flag.name)
            clashes.extend(token for token in flag.tokens if token in self._tokens)
        return clashes

    @property
    def names(self):
        return tuple(self._flags)

    @property
    def tokens(self):
        return tuple(self._tokens)

    def copy(self):
        return FlagSet(self._flags.values())

    def __contains__(self, name, /):
        return name in self._flags

    def __iter__(self):
        return iter(tuple(self._flags.values()))

    def __len__(self):
        return len(self._flags)

    def __repr__(self):
        return f"flag-set({', '.join(map(repr, self._flags))})"


def declare(flags, /):
    """
    Build a FlagSet from flags, failing fast on duplicate names or tokens.
    """
    return FlagSet(flags)


__all__ = (
    # Types
    "Kind",
    "Flag",
    "FlagSet",

    # Functions
    "flag",
    "declare",
    "derive_name",
)

# Not part of the public API.
del FlagType
