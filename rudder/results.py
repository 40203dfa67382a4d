"""
Rudder parse outcomes and handler context.

Variants
- ParseSuccess: resolved arguments of the deepest node, the command chain,
  the immediate parent's arguments, optional SystemArgs and the handler's
  return value (None when no handler ran).
- ParseError: a fault (see rudder.faults) with its kind tag, message and
  structured details.
- ParseExit: a system directive or the help flag answered the invocation;
  no handler ran.

Every variant exposes 'ok' and 'exitcode' so the CLI surface can map it to a
process exit status (0 for success and early exits, 1 for errors).

Context
- The object handed to handlers that declare a parameter defaulting to
  Context: own arguments, parent arguments (read-only), chain, system
  arguments, positionals, the command and whether the call came through the
  structured-call surface.
"""
import functools
import operator
from types import MappingProxyType

from .utils import mirror, Unset


class _Record:
    """
    read-only record: every name in __introspectable__ becomes a read-only property.

    names in __verbatim__ hand back the stored object itself; the others are
    mirrored (fresh container copies).
    """
    __introspectable__ = ()
    __verbatim__ = ("system", "response", "details")

    def __init_subclass__(cls, **options):
        super().__init_subclass__(**options)
        for name in cls.__introspectable__:
            if name in cls.__verbatim__:
                setattr(cls, name, property(operator.attrgetter("_" + name)))
            else:
                setattr(cls, name, mirror(name))

    def __init__(self, **fields):
        for name in type(self).__introspectable__:
            setattr(self, "_" + name, fields.get(name))

    def __rich_repr__(self):
        for name in type(self).__introspectable__:
            yield name, getattr(self, name)

    def __repr__(self):
        return f"{type(self).__name__}({', '.join(map(functools.partial(operator.mod, '%s=%r'), self.__rich_repr__()))})"


class ParseResult(_Record):
    ok = False
    exitcode = 1


class ParseSuccess(ParseResult):
    __introspectable__ = (
        "args",
        "chain",
        "parent_args",
        "system",
        "response",
        "positionals",
        "fuzzy",
    )
    ok = True
    exitcode = 0

    def __init__(self, **fields):
        super().__init__(**fields)
        self.command = fields.get("command")


class ParseError(ParseResult):
    __introspectable__ = (
        "kind",
        "message",
        "details",
        "chain",
        "system",
    )

    def __init__(self, fault, /, **fields):
        super().__init__(
            kind=fault.kind,
            message=fault.message,
            details=fault.details,
            **fields
        )
        self.fault = fault

    def throw(self):
        """
        raise the underlying fault (keeping its cause).
        """
        raise self.fault from self.fault.__cause__


class ParseExit(ParseResult):
    __introspectable__ = (
        "reason",
        "output",
        "chain",
        "system",
    )
    ok = True
    exitcode = 0

    def __init__(self, **fields):
        super().__init__(**fields)
        # rich form of 'output', printed as-is by the CLI surface
        self.renderable = fields.get("renderable")


class Context(_Record):
    """
    what a handler sees of its invocation.

    args and parent_args are read-only mappings; they are separate namespaces,
    so a parent flag and a child flag may share a name.
    """
    __introspectable__ = (
        "chain",
        "system",
        "positionals",
        "structured",
    )

    def __init__(self, args, parent_args=Unset, /, **fields):
        super().__init__(**fields)
        self.args = MappingProxyType(dict(args))
        self.parent_args = MappingProxyType(dict(parent_args or {}))
        self.command = fields.get("command")

    def __rich_repr__(self):
        yield "args", dict(self.args)
        yield "parent_args", dict(self.parent_args)
        yield from super().__rich_repr__()


__all__ = (
    "ParseResult",
    "ParseSuccess",
    "ParseError",
    "ParseExit",
    "Context",
)
